"""unioncache - keep the upper layer of a union-mounted home in sync with the project"""

__version__ = "0.1.0"
