"""
Sparse factor graph optimization over manifold-valued variables.

This module implements batch nonlinear least squares for problems with many
small, local residuals, such as fitting a spline trajectory to thousands of
camera and IMU measurements.

Implements:
    - MAP estimation as a sum of squared whitened residuals
      F(x) = ½ Σ rᵀ Λ r
    - Levenberg-Marquardt (Madsen, Nielsen & Tingleff, Algorithm 3.16):
        (JᵀΛJ + μI) d = -JᵀΛr
      with gain-ratio damping control
        μ ← μ · max(1/3, 1 - (2g - 1)³) on accepted steps
        μ ← μ · ν, ν ← 2ν on rejected steps
    - Updates on manifolds: Euclidean variables x ← x + d,
      unit quaternions q ← q ⊗ Exp(d)

Residuals are organised in vectorised factor groups. A group holds M
observations of the same kind; row m of the group reads one variable per
slot, and the residual function evaluates all M rows in one call. The
Jacobian is obtained by central differences in the tangent space of each
slot and assembled into a scipy.sparse matrix.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import spsolve

from ctcalib.coords.rotations import quat_exp, quat_multiply

EUCLIDEAN = "euclidean"
QUATERNION = "quaternion"


@dataclass
class SolverSummary:
    """
    Diagnostics of one optimization run.

    Attributes:
        iterations: Number of LM iterations performed.
        initial_cost: Cost ½‖r‖²_Λ before the first iteration.
        final_cost: Cost after the last accepted step.
        converged: True if a tolerance criterion stopped the solver.
        termination_reason: One of 'function_tolerance', 'parameter_tolerance',
            'gradient_tolerance', 'max_iterations', 'damping_overflow',
            'no_parameters'.
        cost_history: Cost after every iteration (rejected steps repeat the
            previous cost).
        num_parameters: Dimension of the tangent space being optimized.
        num_residuals: Number of scalar residuals.
    """

    iterations: int
    initial_cost: float
    final_cost: float
    converged: bool
    termination_reason: str
    cost_history: List[float] = field(default_factory=list)
    num_parameters: int = 0
    num_residuals: int = 0

    def report(self) -> str:
        """Short human-readable summary."""
        return (
            f"Levenberg-Marquardt: {self.termination_reason} after {self.iterations} "
            f"iterations, cost {self.initial_cost:.6e} -> {self.final_cost:.6e} "
            f"({self.num_residuals} residuals, {self.num_parameters} parameters)"
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "iterations": int(self.iterations),
            "initial_cost": float(self.initial_cost),
            "final_cost": float(self.final_cost),
            "converged": bool(self.converged),
            "termination_reason": self.termination_reason,
            "num_parameters": int(self.num_parameters),
            "num_residuals": int(self.num_residuals),
        }


class Variable:
    """
    Optimization variable living on a manifold.

    Attributes:
        value: Current value (n,).
        manifold: 'euclidean' (tangent dim n) or 'quaternion' (tangent dim 3).
        constant: If True the variable is read by factors but never updated.
    """

    def __init__(self, value: np.ndarray, manifold: str = EUCLIDEAN, constant: bool = False):
        if manifold not in (EUCLIDEAN, QUATERNION):
            raise ValueError(f"Unknown manifold '{manifold}'")
        self.value = np.asarray(value, dtype=np.float64).reshape(-1).copy()
        if manifold == QUATERNION and self.value.shape != (4,):
            raise ValueError(f"Quaternion variables need 4 elements, got {self.value.shape}")
        self.manifold = manifold
        self.constant = constant

    @property
    def tangent_dim(self) -> int:
        return 3 if self.manifold == QUATERNION else self.value.shape[0]


def manifold_plus(values: np.ndarray, delta: np.ndarray, manifold: str) -> np.ndarray:
    """
    Apply tangent-space increments to a batch of values.

    Args:
        values: Values, shape (M, n).
        delta: Increments, shape (M, tangent_dim).
        manifold: 'euclidean' or 'quaternion'.

    Returns:
        Updated values, shape (M, n).
    """
    if manifold == QUATERNION:
        q = quat_multiply(values, quat_exp(delta))
        return q / np.linalg.norm(q, axis=-1, keepdims=True)
    return values + delta


class FactorGroup:
    """
    Vectorised group of factors sharing one residual function.

    Row m of the group connects the variables variable_ids[m, 0..S-1]; the
    variables of one slot must share manifold and dimension.

    Args:
        name: Group name used in diagnostics (e.g. 'gyro').
        variable_ids: Integer ids, shape (M, S).
        residual_func: Function mapping a list of S arrays (each (M, n_k),
            the values of slot k) to raw residuals of shape (M, residual_dim).
        residual_dim: Dimension of one residual.
        information: Information matrix Λ (residual_dim x residual_dim) or a
            scalar weight applied to every component.
    """

    def __init__(
        self,
        name: str,
        variable_ids: np.ndarray,
        residual_func: Callable[[List[np.ndarray]], np.ndarray],
        residual_dim: int,
        information=1.0,
    ):
        self.name = name
        self.variable_ids = np.atleast_2d(np.asarray(variable_ids, dtype=np.int64))
        self.residual_func = residual_func
        self.residual_dim = int(residual_dim)

        info = np.asarray(information, dtype=np.float64)
        if info.ndim == 0:
            info = info * np.eye(self.residual_dim)
        if info.shape != (self.residual_dim, self.residual_dim):
            raise ValueError(
                f"information must be scalar or {self.residual_dim}x{self.residual_dim}"
            )
        # Λ = L Lᵀ, whitened residual = Lᵀ r
        self.sqrt_information = np.linalg.cholesky(info)

    @property
    def num_rows(self) -> int:
        return self.variable_ids.shape[0]

    @property
    def num_residuals(self) -> int:
        return self.num_rows * self.residual_dim

    def whiten(self, raw: np.ndarray) -> np.ndarray:
        return raw @ self.sqrt_information

    def gather(self, variables: Dict[int, Variable]) -> List[np.ndarray]:
        """Current values of every slot, one (M, n_k) array per slot."""
        return [
            np.array([variables[int(vid)].value for vid in self.variable_ids[:, k]])
            for k in range(self.variable_ids.shape[1])
        ]

    def evaluate(self, variables: Dict[int, Variable]) -> np.ndarray:
        """Whitened residuals, shape (M, residual_dim)."""
        return self.whiten(self.residual_func(self.gather(variables)))

    def linearize(
        self,
        variables: Dict[int, Variable],
        column_of: np.ndarray,
        row_offset: int,
        step: float,
    ) -> Tuple[np.ndarray, List[np.ndarray], List[np.ndarray], List[np.ndarray]]:
        """
        Residuals and Jacobian entries by central differences.

        Args:
            variables: Graph variables.
            column_of: Array mapping variable id to its first Jacobian
                column, -1 for variables that are not optimized.
            row_offset: Index of this group's first scalar residual.
            step: Finite-difference step in the tangent space.

        Returns:
            Tuple (r, rows, cols, vals) with whitened residuals (M, d) and
            COO triplet blocks.
        """
        values = self.gather(variables)
        r0 = self.whiten(self.residual_func(values))
        m, d = self.num_rows, self.residual_dim
        row_base = row_offset + np.arange(m, dtype=np.int64)[:, None] * d + np.arange(d)[None, :]

        rows, cols, vals = [], [], []
        for k in range(self.variable_ids.shape[1]):
            ids = self.variable_ids[:, k]
            first = column_of[ids]
            free = first >= 0
            if not np.any(free):
                continue
            sample = variables[int(ids[np.flatnonzero(free)[0]])]
            for a in range(sample.tangent_dim):
                delta = np.zeros((m, sample.tangent_dim))
                delta[:, a] = step
                plus = list(values)
                minus = list(values)
                plus[k] = manifold_plus(values[k], delta, sample.manifold)
                minus[k] = manifold_plus(values[k], -delta, sample.manifold)
                jac = (
                    self.whiten(self.residual_func(plus)) - self.whiten(self.residual_func(minus))
                ) / (2.0 * step)

                rows.append(row_base[free].reshape(-1))
                cols.append(np.repeat(first[free] + a, d))
                vals.append(jac[free].reshape(-1))
        return r0, rows, cols, vals


class FactorGraph:
    """
    Factor graph for batch estimation with a sparse LM solver.

    Attributes:
        variables: Dictionary mapping variable id to Variable.
        groups: List of factor groups.
        jacobian_step: Central-difference step in the tangent space.

    Example:
        >>> graph = FactorGraph()
        >>> graph.add_variable(0, np.zeros(1))
        >>> z = np.array([1.1, 0.9, 1.2, 0.8])
        >>> graph.add_factor_group(FactorGroup(
        ...     "meas", np.zeros((4, 1), dtype=int),
        ...     lambda vals: vals[0] - z[:, None], residual_dim=1))
        >>> summary = graph.optimize()
        >>> graph.variables[0].value  # ≈ [1.0]
    """

    def __init__(self, jacobian_step: float = 1e-6):
        self.variables: Dict[int, Variable] = {}
        self.groups: List[FactorGroup] = []
        self.jacobian_step = jacobian_step

    def add_variable(
        self,
        var_id: int,
        initial_value: np.ndarray,
        manifold: str = EUCLIDEAN,
        constant: bool = False,
    ) -> None:
        """Add a variable to the graph.

        Raises:
            ValueError: If the id is negative or already used.
        """
        if var_id < 0:
            raise ValueError(f"Variable ids must be non-negative, got {var_id}")
        if var_id in self.variables:
            raise ValueError(f"Variable {var_id} already in graph")
        self.variables[int(var_id)] = Variable(initial_value, manifold, constant)

    def add_factor_group(self, group: FactorGroup) -> None:
        """Add a factor group.

        Raises:
            ValueError: If a referenced variable is not in the graph or a
                slot mixes manifolds.
        """
        for k in range(group.variable_ids.shape[1]):
            ids = np.unique(group.variable_ids[:, k])
            missing = [int(i) for i in ids if int(i) not in self.variables]
            if missing:
                raise ValueError(f"Variable {missing[0]} not in graph")
            kinds = {(self.variables[int(i)].manifold, self.variables[int(i)].value.shape) for i in ids}
            if len(kinds) > 1:
                raise ValueError(f"Slot {k} of group '{group.name}' mixes variable types")
        self.groups.append(group)

    def value(self, var_id: int) -> np.ndarray:
        return self.variables[var_id].value

    def free_variable_ids(self) -> List[int]:
        """Sorted ids of non-constant variables referenced by at least one factor."""
        used = set()
        for group in self.groups:
            used.update(int(i) for i in np.unique(group.variable_ids))
        return sorted(i for i in used if not self.variables[i].constant)

    def compute_error(self) -> float:
        """Total cost ½ Σ rᵀ Λ r."""
        total = 0.0
        for group in self.groups:
            r = group.evaluate(self.variables)
            total += float(np.sum(r * r))
        return 0.5 * total

    def residuals(self) -> Dict[str, np.ndarray]:
        """Whitened residuals per group name."""
        return {group.name: group.evaluate(self.variables) for group in self.groups}

    def optimize(
        self,
        max_iterations: int = 50,
        function_tolerance: float = 1e-10,
        parameter_tolerance: float = 1e-10,
        gradient_tolerance: float = 1e-12,
        initial_mu: Optional[float] = None,
        tau: float = 1e-6,
        callback: Optional[Callable[[int, float, float], None]] = None,
    ) -> SolverSummary:
        """
        Optimize all free variables with Levenberg-Marquardt.

        Args:
            max_iterations: Maximum LM iterations.
            function_tolerance: Stop when an accepted step reduces the cost
                by less than this fraction.
            parameter_tolerance: Stop when ‖d‖ <= tol (‖x‖ + tol).
            gradient_tolerance: Stop when ‖JᵀΛr‖_∞ <= tol.
            initial_mu: Initial damping μ₀. Defaults to τ · max(diag(JᵀΛJ)).
            tau: Scale of the default initial damping.
            callback: Called as callback(iteration, cost, mu) after every
                iteration.

        Returns:
            SolverSummary with the cost history and termination reason.
        """
        return self._levenberg_marquardt(
            max_iterations,
            function_tolerance,
            parameter_tolerance,
            gradient_tolerance,
            initial_mu,
            tau,
            callback,
        )

    def _levenberg_marquardt(
        self,
        max_iterations: int,
        function_tolerance: float,
        parameter_tolerance: float,
        gradient_tolerance: float,
        initial_mu: Optional[float],
        tau: float,
        callback: Optional[Callable[[int, float, float], None]],
    ) -> SolverSummary:
        free_ids = self.free_variable_ids()
        column_of, total_dim = self._column_layout(free_ids)
        num_residuals = sum(group.num_residuals for group in self.groups)

        J, r = self._build_linearized_system(column_of, total_dim)
        cost = 0.5 * float(r @ r)
        history = [cost]
        summary = SolverSummary(
            iterations=0,
            initial_cost=cost,
            final_cost=cost,
            converged=False,
            termination_reason="max_iterations",
            cost_history=history,
            num_parameters=total_dim,
            num_residuals=num_residuals,
        )
        if total_dim == 0:
            summary.converged = True
            summary.termination_reason = "no_parameters"
            return summary

        H = (J.T @ J).tocsc()
        b = -(J.T @ r)
        if np.max(np.abs(b)) <= gradient_tolerance:
            summary.converged = True
            summary.termination_reason = "gradient_tolerance"
            return summary

        mu = initial_mu if initial_mu is not None else tau * float(H.diagonal().max())
        if not mu > 0:
            mu = tau
        nu = 2.0
        identity = sp.identity(total_dim, format="csc")

        for iteration in range(max_iterations):
            summary.iterations = iteration + 1

            # (JᵀΛJ + μI) d = -JᵀΛr
            d_lm = np.atleast_1d(spsolve((H + mu * identity).tocsc(), b))

            x_norm = np.sqrt(sum(float(self.variables[i].value @ self.variables[i].value) for i in free_ids))
            if np.all(np.isfinite(d_lm)) and np.linalg.norm(d_lm) <= parameter_tolerance * (
                x_norm + parameter_tolerance
            ):
                summary.converged = True
                summary.termination_reason = "parameter_tolerance"
                history.append(cost)
                break

            saved = {i: self.variables[i].value.copy() for i in free_ids}
            if np.all(np.isfinite(d_lm)):
                self._update_variables(free_ids, d_lm)
                new_cost = self.compute_error()
            else:
                new_cost = np.inf

            # Gain ratio: actual over predicted reduction, L(0) - L(d) = ½ dᵀ(μd + b)
            predicted_reduction = 0.5 * float(d_lm @ (mu * d_lm + b))
            if np.isfinite(new_cost) and predicted_reduction > 0:
                gain = (cost - new_cost) / predicted_reduction
            else:
                gain = 0.0

            if gain > 0:
                relative_decrease = (cost - new_cost) / cost if cost > 0 else 0.0
                cost = new_cost
                history.append(cost)
                mu *= max(1.0 / 3.0, 1.0 - (2.0 * gain - 1.0) ** 3)
                nu = 2.0

                if relative_decrease < function_tolerance:
                    summary.converged = True
                    summary.termination_reason = "function_tolerance"
                    break

                J, r = self._build_linearized_system(column_of, total_dim)
                H = (J.T @ J).tocsc()
                b = -(J.T @ r)
                if np.max(np.abs(b)) <= gradient_tolerance:
                    summary.converged = True
                    summary.termination_reason = "gradient_tolerance"
                    break
            else:
                for i, value in saved.items():
                    self.variables[i].value = value
                history.append(cost)
                mu *= nu
                nu *= 2.0
                if not np.isfinite(mu) or mu > 1e32:
                    summary.termination_reason = "damping_overflow"
                    break

            if callback is not None:
                callback(iteration, cost, mu)

        summary.final_cost = cost
        return summary

    def _column_layout(self, free_ids: Sequence[int]) -> Tuple[np.ndarray, int]:
        """Map each free variable id to its first column of the Jacobian."""
        max_id = max(self.variables) if self.variables else -1
        column_of = -np.ones(max_id + 1, dtype=np.int64)
        current = 0
        for vid in free_ids:
            column_of[vid] = current
            current += self.variables[vid].tangent_dim
        return column_of, current

    def _build_linearized_system(
        self, column_of: np.ndarray, total_dim: int
    ) -> Tuple[sp.csr_matrix, np.ndarray]:
        """
        Stack whitened residuals r and the sparse Jacobian J = ∂r/∂δx.

        Returns:
            Tuple (J, r) with J of shape (num_residuals, total_dim).
        """
        residuals, rows, cols, vals = [], [], [], []
        offset = 0
        for group in self.groups:
            r, g_rows, g_cols, g_vals = group.linearize(
                self.variables, column_of, offset, self.jacobian_step
            )
            residuals.append(r.reshape(-1))
            rows.extend(g_rows)
            cols.extend(g_cols)
            vals.extend(g_vals)
            offset += group.num_residuals

        r = np.concatenate(residuals) if residuals else np.zeros(0)
        if rows:
            J = sp.coo_matrix(
                (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
                shape=(offset, total_dim),
            ).tocsr()
        else:
            J = sp.csr_matrix((offset, total_dim))
        return J, r

    def _update_variables(self, free_ids: Sequence[int], delta_x: np.ndarray) -> None:
        """Apply a stacked tangent-space update to all free variables."""
        current = 0
        for vid in free_ids:
            var = self.variables[vid]
            dim = var.tangent_dim
            step = delta_x[current : current + dim]
            var.value = manifold_plus(var.value[None, :], step[None, :], var.manifold)[0]
            current += dim
