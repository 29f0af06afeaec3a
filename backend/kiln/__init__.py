"""
Kiln: preprocessor project watcher and build coordinator.

Registers source directories as projects, discovers LESS / Sass / SCSS /
CoffeeScript sources inside them, and compiles them to CSS / JS on demand
or whenever a file changes.
"""

__version__ = "0.1.0"
