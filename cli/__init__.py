"""Command line entry points for the CO2 meter exporter."""
