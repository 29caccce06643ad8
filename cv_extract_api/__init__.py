"""CV Extract API - turns a PDF resume into structured profile and job posting JSON."""

__version__ = "0.3.0"
