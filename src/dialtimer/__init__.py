"""dialtimer: a dial-driven countdown timer."""

__version__ = "0.1.0"
