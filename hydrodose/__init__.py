"""Hydroponic nutrient dosing: EC control, pH/TDS sensor maths, relay sequencing and a Flask web interface."""

__version__ = "0.1.0"

__all__ = ["controller", "ph", "tds", "dosing", "hydro", "webserver"]