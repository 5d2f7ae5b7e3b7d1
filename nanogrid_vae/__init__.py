"""
nanogrid_vae: variational autoencoder over grid diagnostic error-vector
sequences with an auxiliary action recommender.
"""

__version__ = "0.1.0"
