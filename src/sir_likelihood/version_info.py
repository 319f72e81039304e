# src/sir_likelihood/version_info.py
VERSION = "0.1.0"
