# samvaad: Package root. Importing stays side-effect free; the console script lives in main.py.

__version__ = "0.1.0"
