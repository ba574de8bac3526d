"""Sun and moon alignment precomputation for distant-peak photography."""

__version__ = "0.1.0"
