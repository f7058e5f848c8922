"""Controller wire protocol, register layout and browser message schema."""
