"""
Modeling layer: training, stacking, grid and automated search.

Every family is trained through the same request type and returns an
immutable model handle registered in the backend session.
"""
