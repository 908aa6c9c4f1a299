"""Turn map sightings into tracked Pokémon, spawnpoint, route, station and cell records."""

__version__ = "0.1.0"