"""Data contracts shared by the PPS sources, the engine and the outputs."""
