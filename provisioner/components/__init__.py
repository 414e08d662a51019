"""
Recipe modules for the provisioner.

Each recipe lives in its own sub-package as ``<name>/<name>_recipe.py`` and
registers itself with the RecipeRegistry when imported.
"""
