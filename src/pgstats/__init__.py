"""pgstats: vmstat-like statistics tools for PostgreSQL.

``pgstat`` follows one statistics view and prints per-interval deltas,
``pgcsvstat`` dumps every statistics view to CSV files and ``pgwaitevent``
histograms the wait events of a single backend.
"""

__version__ = "1.4.0"

__all__: list[str] = ["__version__"]
