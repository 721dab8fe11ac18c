"""
Entry point for python -m centinela
"""
from .app import main

if __name__ == "__main__":
    main()
