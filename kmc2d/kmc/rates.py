"""
Rate calculations for KMC hops using the Arrhenius equation.

This module turns a transition's saddle energy, the departing site's energy
and its coordination correction into an activation barrier, and the barrier
and attempt frequency into a hop rate.
"""

from __future__ import annotations

import math

from ..data.physical_constants import PhysicalConstants, get_physical_constants


class ArrheniusRate:
    """
    Calculate a hop rate using the Arrhenius equation.

    The rate is given by: Γ = ν * 10^12 * exp(-Ea * q / (kB * T))

    Attributes:
        prefactor: Attempt frequency ν (THz).
        barrier: Activation energy Ea (eV).
        temperature: Temperature T (K).
        constants: Physical constants.
    """

    def __init__(
        self,
        prefactor: float,
        barrier: float,
        temperature: float,
        constants: PhysicalConstants | None = None,
    ) -> None:
        """
        Initialize Arrhenius rate calculator.

        Args:
            prefactor: Attempt frequency (THz).
            barrier: Activation energy (eV).
            temperature: Temperature (K).
            constants: Physical constants. Defaults if None.
        """
        self.prefactor = prefactor
        self.barrier = barrier
        self.temperature = temperature
        self.constants = constants if constants is not None else get_physical_constants()

    def calculate_rate(self) -> float:
        """
        Calculate the hop rate.

        Returns:
            Hop rate in Hz.
        """
        exponent = -self.barrier * self.constants.beta(self.temperature)
        return self.prefactor * self.constants.prefactor_unit * math.exp(exponent)

    def __repr__(self) -> str:
        """String representation."""
        rate = self.calculate_rate()
        return (
            f"ArrheniusRate(Ea={self.barrier:.3f} eV, "
            f"T={self.temperature:.1f} K, rate={rate:.2e} Hz)"
        )


class RateCalculator:
    """
    Calculate activation barriers and rates for hops out of occupied sites.

    Attributes:
        temperature: System temperature (K).
        constants: Physical constants.
        beta: q / (kB T) in 1/eV, cached for the current temperature.
    """

    def __init__(self, temperature: float, constants: PhysicalConstants | None = None) -> None:
        """
        Initialize rate calculator.

        Args:
            temperature: System temperature (K).
            constants: Physical constants. Defaults if None.
        """
        self.constants = constants if constants is not None else get_physical_constants()
        self.temperature = temperature

    @property
    def temperature(self) -> float:
        return self._temperature

    @temperature.setter
    def temperature(self, value: float) -> None:
        self.beta = self.constants.beta(value)
        self._temperature = float(value)

    @staticmethod
    def effective_barrier(saddle_energy: float, site_energy: float, modifier: float = 0.0) -> float:
        """
        Activation barrier for leaving a site.

        Args:
            saddle_energy: Transition saddle point energy (eV).
            site_energy: Energy of the occupied departing site (eV).
            modifier: Coordination correction of the departing site (eV).

        Returns:
            max(0, saddle - site - modifier) in eV.
        """
        return max(0.0, saddle_energy - site_energy - modifier)

    def calculate_hop_rate(self, prefactor: float, barrier: float) -> float:
        """
        Calculate a hop rate.

        Args:
            prefactor: Attempt frequency (THz).
            barrier: Activation barrier (eV).

        Returns:
            Hop rate (Hz). Exactly prefactor * 1e12 when the barrier is zero.
        """
        return prefactor * self.constants.prefactor_unit * math.exp(-barrier * self.beta)
