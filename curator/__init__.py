"""Live Music Curator: turns a city's concert listings into a Spotify playlist."""
