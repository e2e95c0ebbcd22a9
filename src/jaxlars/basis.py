"""
Basis Function Library for JAXLARS.

Provides the candidate dictionary: an ordered collection of scalar basis
functions that the sequence builders select from.
"""

from __future__ import annotations

import itertools
import json
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import jax.numpy as jnp


@dataclass
class BasisFunction:
    """
    A single basis function with metadata.

    Parameters
    ----------
    name : str
        Human-readable name for the basis function.
    func : Callable
        Function that takes X of shape (n_samples, n_features) and returns
        array of shape (n_samples,).
    complexity : int
        Complexity score (polynomial degree for polynomial terms).
    feature_indices : tuple
        Indices of features used by this basis function.
    func_type : str
        Type of function (for serialization): "constant", "linear",
        "polynomial", "interaction", "polynomial_interaction",
        "orthogonal", "custom".
    func_config : dict
        Configuration for reconstructing the function (for serialization).
    """

    name: str
    func: Callable[[jnp.ndarray], jnp.ndarray]
    complexity: int = 1
    feature_indices: tuple[int, ...] = ()
    func_type: str = "custom"
    func_config: dict[str, Any] = field(default_factory=dict)

    def evaluate(self, X: jnp.ndarray) -> jnp.ndarray:
        """Evaluate the basis function on input data."""
        return self.func(X)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (excluding func)."""
        return {
            "name": self.name,
            "complexity": self.complexity,
            "feature_indices": list(self.feature_indices),
            "func_type": self.func_type,
            "func_config": self.func_config,
        }


# =============================================================================
# Univariate orthogonal polynomials
# =============================================================================

_ORTHOGONAL_FAMILIES = {
    "legendre": "P",
    "hermite": "He",
    "laguerre": "L",
}


def orthogonal_polynomial(
    x: jnp.ndarray,
    family: str,
    degree: int,
    normalized: bool = True,
) -> jnp.ndarray:
    """
    Evaluate a univariate orthogonal polynomial by its three-term recurrence.

    Parameters
    ----------
    x : jnp.ndarray
        Points of shape (n_samples,).
    family : str
        "legendre" (uniform on [-1, 1]), "hermite" (probabilists', standard
        normal) or "laguerre" (standard exponential).
    degree : int
        Polynomial degree.
    normalized : bool
        If True, scale to unit norm under the family's weight.

    Returns
    -------
    values : jnp.ndarray
        Polynomial values of shape (n_samples,).
    """
    if family not in _ORTHOGONAL_FAMILIES:
        raise ValueError(
            f"Unknown polynomial family '{family}'. "
            f"Available: {sorted(_ORTHOGONAL_FAMILIES)}"
        )

    prev = jnp.ones_like(x)
    if degree == 0:
        return prev

    if family == "legendre":
        curr = x
    elif family == "hermite":
        curr = x
    else:
        curr = 1.0 - x

    for n in range(1, degree):
        if family == "legendre":
            nxt = ((2 * n + 1) * x * curr - n * prev) / (n + 1)
        elif family == "hermite":
            nxt = x * curr - n * prev
        else:
            nxt = ((2 * n + 1 - x) * curr - n * prev) / (n + 1)
        prev, curr = curr, nxt

    if normalized:
        if family == "legendre":
            curr = curr * math.sqrt(2 * degree + 1)
        elif family == "hermite":
            curr = curr / math.sqrt(math.factorial(degree))
    return curr


def _tensor_orthogonal(X, exponents, family, normalized):
    result = jnp.ones(X.shape[0])
    for i, d in enumerate(exponents):
        if d > 0:
            result = result * orthogonal_polynomial(X[:, i], family, d, normalized)
    return result


class BasisLibrary:
    """
    Library of candidate basis functions.

    The order in which functions are added defines the dictionary indices
    used by the sequence builders. Supports method chaining.

    Parameters
    ----------
    n_features : int
        Number of input features.
    feature_names : list of str, optional
        Names for each feature. Defaults to ["x0", "x1", ...].

    Examples
    --------
    >>> library = (BasisLibrary(n_features=2, feature_names=["x", "y"])
    ...     .add_constant()
    ...     .add_linear()
    ...     .add_polynomials(max_degree=3)
    ...     .add_interactions(max_order=2)
    ... )
    >>> Phi = library.evaluate(X)
    """

    def __init__(
        self,
        n_features: int,
        feature_names: list[str] | None = None,
    ):
        if n_features < 1:
            raise ValueError(f"n_features must be positive, got {n_features}")

        self.n_features = n_features
        self.feature_names = feature_names or [f"x{i}" for i in range(n_features)]
        self.basis_functions: list[BasisFunction] = []

        if len(self.feature_names) != n_features:
            raise ValueError(
                f"Number of feature names ({len(self.feature_names)}) "
                f"must match n_features ({n_features})"
            )

    def add_constant(self) -> BasisLibrary:
        """Add constant (intercept) term."""
        self.basis_functions.append(
            BasisFunction(
                name="1",
                func=lambda X: jnp.ones(X.shape[0]),
                complexity=0,
                feature_indices=(),
                func_type="constant",
                func_config={},
            )
        )
        return self

    def add_linear(self) -> BasisLibrary:
        """Add linear terms: x_i for each feature."""
        for i in range(self.n_features):
            self.basis_functions.append(
                BasisFunction(
                    name=self.feature_names[i],
                    func=partial(lambda X, idx: X[:, idx], idx=i),
                    complexity=1,
                    feature_indices=(i,),
                    func_type="linear",
                    func_config={"feature_index": i},
                )
            )
        return self

    def add_polynomials(self, max_degree: int = 2) -> BasisLibrary:
        """
        Add polynomial terms: x_i^d for d in 2..max_degree.

        Parameters
        ----------
        max_degree : int
            Maximum polynomial degree (default 2).
        """
        if max_degree < 2:
            return self

        for i in range(self.n_features):
            for d in range(2, max_degree + 1):
                self.basis_functions.append(
                    BasisFunction(
                        name=f"{self.feature_names[i]}^{d}",
                        func=partial(lambda X, idx, deg: X[:, idx] ** deg, idx=i, deg=d),
                        complexity=d,
                        feature_indices=(i,),
                        func_type="polynomial",
                        func_config={"feature_index": i, "degree": d},
                    )
                )
        return self

    def add_interactions(self, max_order: int = 2) -> BasisLibrary:
        """
        Add interaction terms: products of distinct features.

        Parameters
        ----------
        max_order : int
            Maximum interaction order (default 2 for pairwise).
        """
        for order in range(2, max_order + 1):
            for combo in itertools.combinations(range(self.n_features), order):
                combo_list = list(combo)
                self.basis_functions.append(
                    BasisFunction(
                        name="*".join(self.feature_names[i] for i in combo),
                        func=partial(
                            lambda X, indices: jnp.prod(X[:, indices], axis=1),
                            indices=jnp.array(combo_list),
                        ),
                        complexity=order,
                        feature_indices=tuple(combo),
                        func_type="interaction",
                        func_config={"feature_indices": combo_list, "order": order},
                    )
                )
        return self

    def add_polynomial_interactions(
        self,
        max_total_degree: int = 3,
        max_individual_degree: int = 2,
    ) -> BasisLibrary:
        """
        Add polynomial terms with mixed powers: x_i^a * x_j^b * ...

        Only terms involving at least two features are added; pure powers
        come from :meth:`add_polynomials`.

        Parameters
        ----------
        max_total_degree : int
            Maximum sum of all exponents (default 3).
        max_individual_degree : int
            Maximum exponent for any single variable (default 2).
        """
        for total_deg in range(2, max_total_degree + 1):
            for exponents in _exponent_combinations(
                self.n_features, total_deg, max_individual_degree
            ):
                if sum(1 for e in exponents if e > 0) < 2:
                    continue
                self._append_monomial(list(exponents))
        return self

    def _append_monomial(self, exponents: list[int]) -> None:
        terms = []
        indices = []
        for i, exp in enumerate(exponents):
            if exp > 0:
                indices.append(i)
                terms.append(
                    self.feature_names[i] if exp == 1 else f"{self.feature_names[i]}^{exp}"
                )

        self.basis_functions.append(
            BasisFunction(
                name="*".join(terms),
                func=partial(
                    lambda X, exp: jnp.prod(X**exp, axis=1),
                    exp=jnp.array(exponents),
                ),
                complexity=sum(exponents),
                feature_indices=tuple(indices),
                func_type="polynomial_interaction",
                func_config={"exponents": list(exponents)},
            )
        )

    def add_orthogonal_polynomials(
        self,
        family: str = "legendre",
        max_degree: int = 3,
        normalized: bool = True,
        max_individual_degree: int | None = None,
    ) -> BasisLibrary:
        """
        Add a total-degree tensorized orthogonal polynomial basis.

        Terms are enumerated by increasing total degree, starting with the
        constant term, which gives the usual graded ordering of polynomial
        chaos dictionaries.

        Parameters
        ----------
        family : str
            "legendre", "hermite" or "laguerre".
        max_degree : int
            Maximum total degree.
        normalized : bool
            If True, every univariate factor has unit norm.
        max_individual_degree : int, optional
            Maximum degree of any single factor. Defaults to ``max_degree``.
        """
        if family not in _ORTHOGONAL_FAMILIES:
            raise ValueError(
                f"Unknown polynomial family '{family}'. "
                f"Available: {sorted(_ORTHOGONAL_FAMILIES)}"
            )
        max_individual = max_degree if max_individual_degree is None else max_individual_degree

        for total_deg in range(max_degree + 1):
            for exponents in _exponent_combinations(self.n_features, total_deg, max_individual):
                self._append_orthogonal(family, list(exponents), normalized)
        return self

    def _append_orthogonal(self, family: str, exponents: list[int], normalized: bool) -> None:
        symbol = _ORTHOGONAL_FAMILIES[family]
        factors = [
            f"{symbol}{d}({self.feature_names[i]})" for i, d in enumerate(exponents) if d > 0
        ]
        self.basis_functions.append(
            BasisFunction(
                name="*".join(factors) if factors else "1",
                func=partial(
                    _tensor_orthogonal,
                    exponents=tuple(exponents),
                    family=family,
                    normalized=normalized,
                ),
                complexity=sum(exponents),
                feature_indices=tuple(i for i, d in enumerate(exponents) if d > 0),
                func_type="orthogonal",
                func_config={
                    "family": family,
                    "exponents": list(exponents),
                    "normalized": normalized,
                },
            )
        )

    def add_custom(
        self,
        name: str,
        func: Callable[[jnp.ndarray], jnp.ndarray],
        complexity: int = 3,
        feature_indices: tuple[int, ...] | None = None,
    ) -> BasisLibrary:
        """
        Add a custom basis function.

        Parameters
        ----------
        name : str
            Human-readable name.
        func : callable
            Function that takes X of shape (n_samples, n_features) and returns
            array of shape (n_samples,).
        complexity : int
            Complexity score.
        feature_indices : tuple of int, optional
            Indices of features used by this function.

        Notes
        -----
        Custom functions cannot be serialized. The library can still be
        saved, but loading it raises until the function is re-added.
        """
        self.basis_functions.append(
            BasisFunction(
                name=name,
                func=func,
                complexity=complexity,
                feature_indices=feature_indices or (),
                func_type="custom",
                func_config={"name": name},
            )
        )
        return self

    def evaluate(self, X: jnp.ndarray) -> jnp.ndarray:
        """
        Evaluate all basis functions on input data.

        Parameters
        ----------
        X : jnp.ndarray
            Input array of shape (n_samples, n_features).

        Returns
        -------
        Phi : jnp.ndarray
            Design matrix of shape (n_samples, n_basis).
        """
        if len(self.basis_functions) == 0:
            raise ValueError("No basis functions defined. Add some first.")

        X = jnp.atleast_2d(jnp.asarray(X))
        if X.shape[1] != self.n_features:
            raise ValueError(f"Expected {self.n_features} features, got {X.shape[1]}")

        return jnp.column_stack([bf.func(X) for bf in self.basis_functions])

    def evaluate_subset(
        self,
        X: jnp.ndarray,
        indices: list[int] | jnp.ndarray,
    ) -> jnp.ndarray:
        """
        Evaluate a subset of basis functions.

        Returns
        -------
        Phi : jnp.ndarray
            Design matrix of shape (n_samples, len(indices)).
        """
        X = jnp.atleast_2d(jnp.asarray(X))
        columns = [self.basis_functions[int(i)].func(X) for i in indices]
        if not columns:
            return jnp.zeros((X.shape[0], 0))
        return jnp.column_stack(columns)

    @property
    def names(self) -> list[str]:
        """List of basis function names."""
        return [bf.name for bf in self.basis_functions]

    @property
    def complexities(self) -> jnp.ndarray:
        """Array of complexity scores."""
        return jnp.array([bf.complexity for bf in self.basis_functions])

    def __len__(self) -> int:
        return len(self.basis_functions)

    def __repr__(self) -> str:
        return (
            f"BasisLibrary(n_features={self.n_features}, "
            f"n_basis={len(self)}, "
            f"feature_names={self.feature_names})"
        )

    def summary(self) -> str:
        """Return a summary of the library contents."""
        lines = [
            f"BasisLibrary with {len(self)} basis functions:",
            f"  Features: {self.feature_names}",
            "",
            "  Basis functions:",
        ]
        for i, bf in enumerate(self.basis_functions):
            lines.append(f"    [{i:3d}] {bf.name} (complexity={bf.complexity})")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize library configuration to dictionary.

        Custom functions are recorded by name only.
        """
        return {
            "n_features": self.n_features,
            "feature_names": self.feature_names,
            "basis_functions": [bf.to_dict() for bf in self.basis_functions],
        }

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> BasisLibrary:
        """
        Reconstruct library from configuration dictionary.

        Raises
        ------
        ValueError
            If the configuration holds a custom function or an unknown type.
        """
        library = cls(
            n_features=config["n_features"],
            feature_names=config["feature_names"],
        )

        for bf_config in config["basis_functions"]:
            func_type = bf_config["func_type"]
            fc = bf_config["func_config"]

            if func_type == "constant":
                library.add_constant()
            elif func_type == "linear":
                i = fc["feature_index"]
                library.basis_functions.append(
                    BasisFunction(
                        name=bf_config["name"],
                        func=partial(lambda X, idx: X[:, idx], idx=i),
                        complexity=bf_config["complexity"],
                        feature_indices=(i,),
                        func_type="linear",
                        func_config=fc,
                    )
                )
            elif func_type == "polynomial":
                i = fc["feature_index"]
                d = fc["degree"]
                library.basis_functions.append(
                    BasisFunction(
                        name=bf_config["name"],
                        func=partial(lambda X, idx, deg: X[:, idx] ** deg, idx=i, deg=d),
                        complexity=bf_config["complexity"],
                        feature_indices=(i,),
                        func_type="polynomial",
                        func_config=fc,
                    )
                )
            elif func_type == "interaction":
                indices = jnp.array(fc["feature_indices"])
                library.basis_functions.append(
                    BasisFunction(
                        name=bf_config["name"],
                        func=partial(
                            lambda X, idx: jnp.prod(X[:, idx], axis=1),
                            idx=indices,
                        ),
                        complexity=bf_config["complexity"],
                        feature_indices=tuple(fc["feature_indices"]),
                        func_type="interaction",
                        func_config=fc,
                    )
                )
            elif func_type == "polynomial_interaction":
                library._append_monomial(list(fc["exponents"]))
            elif func_type == "orthogonal":
                library._append_orthogonal(
                    fc["family"], list(fc["exponents"]), fc.get("normalized", True)
                )
            elif func_type == "custom":
                raise ValueError(
                    f"Cannot deserialize custom function '{bf_config['name']}'. "
                    "Re-add it manually using add_custom()."
                )
            else:
                raise ValueError(f"Unknown function type: {func_type}")

        return library

    def save(self, filepath: str) -> None:
        """Save library configuration to JSON file."""
        with open(filepath, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> BasisLibrary:
        """Load library from JSON file."""
        with open(filepath) as f:
            config = json.load(f)
        return cls.from_dict(config)


def _exponent_combinations(n_vars: int, total: int, max_individual: int):
    """Generate exponent tuples summing to ``total`` (first variable varies slowest)."""
    if n_vars == 1:
        if total <= max_individual:
            yield (total,)
        return

    for exp in range(min(total, max_individual), -1, -1):
        for rest in _exponent_combinations(n_vars - 1, total - exp, max_individual):
            yield (exp,) + rest
