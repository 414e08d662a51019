# provisioner/registry.py
"""
Registry for recipes.

Recipe modules register themselves with the :meth:`RecipeRegistry.register`
decorator; the CLI offers every registered name.
"""

from typing import Dict, List, Type

from provisioner.base_recipe import BaseRecipe


class RecipeRegistry:
    """
    Registry for recipe classes.
    """

    _registry: Dict[str, Type[BaseRecipe]] = {}

    @classmethod
    def register(cls, name: str):
        """
        Decorator for registering recipe classes.

        Args:
            name: The name the recipe is selected by on the command line.

        Returns:
            A decorator function that registers the recipe class.
        """

        def decorator(recipe_class: Type[BaseRecipe]) -> Type[BaseRecipe]:
            if name in cls._registry and cls._registry[name] is not recipe_class:
                raise ValueError(f"Recipe with name '{name}' already registered")
            recipe_class.name = name
            cls._registry[name] = recipe_class
            return recipe_class

        return decorator

    @classmethod
    def get_recipe(cls, name: str) -> Type[BaseRecipe]:
        """
        Get a recipe class by name.

        Raises:
            KeyError: If no recipe with the given name is registered.
        """
        if name not in cls._registry:
            raise KeyError(f"No recipe registered with name '{name}'")
        return cls._registry[name]

    @classmethod
    def names(cls) -> List[str]:
        return sorted(cls._registry)
