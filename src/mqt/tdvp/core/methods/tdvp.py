# Copyright (c) 2025 Chair for Design Automation, TUM
# All rights reserved.
#
# SPDX-License-Identifier: MIT
#
# Licensed under the MIT License

"""Two-site Time-Dependent Variational Principle (TDVP).

This module evolves a Matrix Product State (MPS) under a Matrix Product Operator (MPO), or an implicit
sum of MPOs, with the symmetric two-site TDVP integrator. Every sweep visits all bonds from left to right
and back. At each bond the merged two-site tensor is propagated forward by half the sweep step with a
Krylov method, split by a truncated decomposition (optionally with a density matrix perturbation), and
the new orthogonality center is propagated backward by half the sweep step before the window moves on.

The sweep reports its progress through tqdm, through the observer of the run and through the module
logger.

Reference:
    J. Haegeman, C. Lubich, I. Oseledets, B. Vandereycken, F. Verstraete,
    "Unifying time evolution and optimization with matrix product states",
    Phys. Rev. B 94, 165116 (2016) (arXiv:1408.5056)
"""

from __future__ import annotations

import logging
import numbers
import time
from typing import TYPE_CHECKING

import numpy as np
from tqdm import tqdm

from ..data_structures.simulation_parameters import TDVPOptions, TimeStepMode, sweep_schedule
from ..errors import ConfigurationError
from .decompositions import replace_bond
from .effective_operator import make_effective_operator, merge_mps_tensors
from .matrix_exponential import exponentiate
from .storage import StorageTier

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from ..data_structures.networks import MPO, MPS
    from ..data_structures.simulation_parameters import SweepParams, Sweeps
    from .decompositions import Spectrum
    from .effective_operator import EffectiveOperator, EffectiveOperatorSum

logger = logging.getLogger(__name__)


def _check_inputs(operators: list[MPO], state: MPS) -> None:
    """Validate the index structure of the operators and the state.

    Raises:
        ConfigurationError: If the state is too short or the operators do not match the state.
    """
    if not operators:
        msg = "At least one operator is required."
        raise ConfigurationError(msg)
    if state.length < 2 or len(state.tensors) < 2:
        msg = f"Two-site TDVP requires at least two sites, the state has {state.length}."
        raise ConfigurationError(msg)
    if len(state.tensors) != state.length:
        msg = "The number of state tensors does not match the state length."
        raise ConfigurationError(msg)
    for site, tensor in enumerate(state.tensors):
        if np.ndim(tensor) != 3:
            msg = f"State tensor at site {site} has rank {np.ndim(tensor)}, expected 3."
            raise ConfigurationError(msg)

    if state.tensors[0].shape[1] != 1 or state.tensors[-1].shape[2] != 1:
        msg = "The boundary bonds of the state must have dimension 1."
        raise ConfigurationError(msg)
    for site in range(1, state.length):
        if state.tensors[site].shape[1] != state.tensors[site - 1].shape[2]:
            msg = f"Inconsistent state bond between the sites {site - 1} and {site}."
            raise ConfigurationError(msg)

    for index, mpo in enumerate(operators):
        if mpo.length != state.length or len(mpo.tensors) != state.length:
            msg = f"Operator {index} has {len(mpo.tensors)} sites, the state has {state.length}."
            raise ConfigurationError(msg)
        for site, tensor in enumerate(mpo.tensors):
            if np.ndim(tensor) != 4:
                msg = f"Operator {index} has a tensor of rank {np.ndim(tensor)} at site {site}, expected 4."
                raise ConfigurationError(msg)
            d = state.tensors[site].shape[0]
            if tensor.shape[0] != d or tensor.shape[1] != d:
                msg = (
                    f"Operator {index} has physical dimensions {tensor.shape[:2]} at site {site}, "
                    f"the state has {d}."
                )
                raise ConfigurationError(msg)
        if not mpo.check_if_valid_mpo():
            msg = f"Inconsistent bonds in operator {index}."
            raise ConfigurationError(msg)
        if mpo.tensors[0].shape[2] != 1 or mpo.tensors[-1].shape[3] != 1:
            msg = f"The boundary bonds of operator {index} must have dimension 1."
            raise ConfigurationError(msg)


def _move_center_to(state: MPS, site: int) -> None:
    """Bring the orthogonality center of the state to the given site."""
    if state.orthogonality_center is None:
        state.set_canonical_form(site)
        return
    while state.orthogonality_center > site:
        state.shift_orthogonality_center_left(state.orthogonality_center)
    while state.orthogonality_center < site:
        state.shift_orthogonality_center_right(state.orthogonality_center)


def _propagate(
    effective: EffectiveOperator | EffectiveOperatorSum,
    site: int,
    nsite: int,
    step: complex,
    tensor: NDArray[np.complex128],
    options: TDVPOptions,
) -> NDArray[np.complex128]:
    """Apply exp(step * H_eff) to a local tensor of the window site..site+nsite-1.

    Returns:
        The propagated tensor, normalized if requested by the options.
    """
    operator = effective.local_operator(site, nsite, tensor.shape)
    tensor, info = exponentiate(
        operator,
        step,
        tensor,
        tol=options.propagator_tol,
        krylov_dim=options.propagator_krylov_dim,
        max_iter=options.propagator_max_iter,
        verbosity=options.propagator_verbosity,
    )
    if not info.converged:
        logger.debug("Local propagation at site %d (%d sites) did not converge: %s", site, nsite, info)
    if options.normalize:
        norm = np.linalg.norm(tensor)
        if norm > 0:
            tensor /= norm
    return tensor


def _update_bond(
    effective: EffectiveOperator | EffectiveOperatorSum,
    state: MPS,
    bond: int,
    half_sweep: int,
    step: complex,
    params: SweepParams,
    options: TDVPOptions,
) -> Spectrum:
    """Two-site update at a bond followed by the backward one-site update of the new center.

    Returns:
        Spectrum: The spectrum of the bond decomposition.
    """
    effective.recenter(state, bond, 2)
    theta = merge_mps_tensors(state.tensors[bond], state.tensors[bond + 1])
    theta = _propagate(effective, bond, 2, step, theta, options)

    ortho = "left" if half_sweep == 1 else "right"
    perturbation = None
    if params.noise > 0.0:
        perturbation = params.noise * effective.noise_term(theta, bond, ortho)

    spectrum = replace_bond(
        state,
        bond,
        theta,
        max_bond_dim=params.max_bond_dim,
        min_bond_dim=params.min_bond_dim,
        cutoff=params.cutoff,
        perturbation=perturbation,
        ortho=ortho,
        normalize=True,
        which_decomp=options.which_decomp,
        svd_alg=options.svd_alg,
    )

    # The center is handed over to the next pair, except at the ends of a half-sweep.
    last_bond = state.length - 2 if half_sweep == 1 else 0
    if bond != last_bond:
        center = bond + 1 if half_sweep == 1 else bond
        effective.recenter(state, center, 1)
        state.tensors[center] = _propagate(effective, center, 1, -step, state.tensors[center], options)
    return spectrum


def evolve(
    operator: MPO | Sequence[MPO],
    state: MPS,
    t: complex,
    sweeps: Sweeps,
    options: TDVPOptions | None = None,
) -> MPS:
    """Evolve an MPS with the symmetric two-site TDVP integrator.

    The propagator is exp(t * H). Pass ``t = -1j * time`` for real-time evolution and a negative real t
    for imaginary-time evolution. The state is updated in place and returned with its orthogonality
    center at site 0.

    Args:
        operator: The MPO H, or a list of MPOs whose sum is H.
        state: The state, with at least two sites.
        t: The (complex) time of the run, distributed over the sweeps according to options.time_step_mode.
        sweeps: Number of sweeps and their truncation parameters.
        options: Further options of the run. Default is TDVPOptions().

    Returns:
        MPS: The evolved state (the same object as ``state``).

    Raises:
        ConfigurationError: If the inputs are inconsistent. The state is not modified in this case.
    """
    if options is None:
        options = TDVPOptions()
    operators = list(operator) if isinstance(operator, (list, tuple)) else [operator]
    _check_inputs(operators, state)
    if not isinstance(t, numbers.Number):
        msg = f"The time must be a number, got {t!r}."
        raise ConfigurationError(msg)

    num_sweeps = sweeps.num_sweeps
    sweep_step = t / num_sweeps if options.time_step_mode is TimeStepMode.TOTAL else t
    half_step = sweep_step / 2
    output_level = options.output_level
    observer = options.observer

    _move_center_to(state, 0)
    effective = make_effective_operator(
        operators if len(operators) > 1 else operators[0], directory=options.disk_directory
    )
    logger.debug("Starting TDVP with %d sweeps on %d sites, sweep step %s", num_sweeps, state.length, sweep_step)
    try:
        with tqdm(total=num_sweeps, desc="TDVP sweeps", ncols=80, disable=output_level < 1) as pbar:
            for sweep in range(1, num_sweeps + 1):
                params = sweeps.params(sweep)
                sweep_start = time.perf_counter()

                threshold = options.write_when_maxdim_exceeds
                if threshold is not None and params.max_bond_dim > threshold and effective.tier is StorageTier.MEMORY:
                    if output_level >= 2:
                        tqdm.write(
                            f"write_when_maxdim_exceeds = {threshold} and max_bond_dim = {params.max_bond_dim}, "
                            "writing environment tensors to disk"
                        )
                    logger.debug("Relocating environments to disk before sweep %d", sweep)
                    effective.relocate(StorageTier.DISK)

                max_truncation_error = 0.0
                for bond, half_sweep in sweep_schedule(state.length):
                    spectrum = _update_bond(effective, state, bond, half_sweep, half_step, params, options)
                    max_truncation_error = max(max_truncation_error, spectrum.truncation_error)

                    if output_level >= 2:
                        tqdm.write(
                            f"Sweep {sweep}, half {half_sweep}, bond ({bond},{bond + 1})\n"
                            f"  Truncated using cutoff={params.cutoff:.1E} max_bond_dim={params.max_bond_dim} "
                            f"min_bond_dim={params.min_bond_dim}\n"
                            f"  Trunc. err={spectrum.truncation_error:.2E}, "
                            f"bond dimension {state.tensors[bond].shape[2]}"
                        )
                    observer.on_bond_update(
                        state,
                        bond,
                        sweep,
                        half_sweep,
                        spectrum,
                        output_level,
                        sweep_is_done=(bond == 0 and half_sweep == 2),
                    )

                elapsed = time.perf_counter() - sweep_start
                logger.debug(
                    "Sweep %d done: max bond %d, max truncation error %.2e, %.3f s",
                    sweep,
                    state.get_max_bond(),
                    max_truncation_error,
                    elapsed,
                )
                if output_level >= 1:
                    tqdm.write(
                        f"After sweep {sweep} maxlinkdim={state.get_max_bond()} "
                        f"maxerr={max_truncation_error:.2E} time={elapsed:.3f}"
                    )
                pbar.update(1)

                if observer.on_sweep_done(state, sweep, output_level):
                    logger.debug("Observer stopped the run after sweep %d", sweep)
                    break
    finally:
        effective.close()

    return state
