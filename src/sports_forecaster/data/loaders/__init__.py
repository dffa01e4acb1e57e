"""Schedule and market-line feeds (in-memory frames and nfl_data_py)."""
