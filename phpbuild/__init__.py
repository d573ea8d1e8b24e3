# php-build/phpbuild/__init__.py
"""php-build: build PHP versions from definitions into an isolated prefix."""

__version__ = "0.11.0"
