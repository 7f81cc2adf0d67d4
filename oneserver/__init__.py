"""oneserver - interactive hardening and runtime setup for Debian/Ubuntu hosts."""

try:
    from oneserver._version import version as __version__
except ImportError:
    __version__ = "0.0.0.dev0"
