"""
Physical constants used to turn barriers and prefactors into hop rates.

Energies are in eV, prefactors in THz and rates in Hz. With the barrier in eV,
the Boltzmann factor exponent is ``barrier * q / (k_B * T)``.

References:
    - CODATA recommended values, as exposed by ``scipy.constants``
"""

from __future__ import annotations

from dataclasses import dataclass

from scipy import constants


@dataclass(frozen=True)
class PhysicalConstants:
    """
    Constants entering the hop rate.

    Attributes:
        elementary_charge: Elementary charge q (C), converts eV to J.
        k_boltzmann: Boltzmann constant (J/K).
        prefactor_unit: Conversion of prefactors to Hz (THz -> Hz).
    """

    elementary_charge: float = constants.e
    k_boltzmann: float = constants.k
    prefactor_unit: float = 1e12

    def beta(self, temperature: float) -> float:
        """
        Inverse thermal energy q / (k_B T) in 1/eV.

        Args:
            temperature: Temperature (K).

        Returns:
            About 38.68 1/eV at 300 K.
        """
        if temperature <= 0:
            raise ValueError(f"Temperature must be positive, got {temperature} K")
        return self.elementary_charge / (self.k_boltzmann * temperature)


def get_physical_constants() -> PhysicalConstants:
    """Get the default constants."""
    return PhysicalConstants()
