"""solstake - client for the stake_test program: derive, stake, listen, reconcile."""

__version__ = "0.1.0"
