"""
Domain layer for the scenario engine.

Models, ports and validation rules. No dependencies beyond the standard
library.
"""
