"""
Toric IOL Axis Calculator

Combines keratometry, posterior corneal astigmatism, surgically induced
astigmatism (SIA) and the selected catalog lens into a full axis analysis using
double-angle vector arithmetic.

Key Features:
- Anterior + posterior (nomogram) total corneal astigmatism
- Eye-aware SIA axis mapping per incision location
- Implantation axis from the post-SIA target vector
- Residual prediction with overcorrection axis flip
- Misalignment effect and cyclotorsion axis correction
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from toricguide.models.schema import AstigmatismType, CorrectionType, Eye, IncisionLocation
from .astigmatism import AstigmatismVector, add, normalize_axis
from .iol_catalog import ALL_TORIC_IOLS, IOLManufacturer, ToricIOL, find_best_match, models_for

log = logging.getLogger(__name__)

EXACT_TOLERANCE_D = 1e-6
SIGNIFICANT_MISALIGNMENT_DEG = 10.0
CRITICAL_MISALIGNMENT_DEG = 30.0

COMMON_INCISION_SIZES_MM = [2.0, 2.2, 2.4, 2.6, 2.75, 3.0]


@dataclass
class Keratometry:
    """Keratometry: K1 is the flat meridian, K2 the steep one."""
    k1_power: float = 43.0  # D
    k1_axis: float = 180.0  # degrees
    k2_power: float = 44.0  # D
    k2_axis: float = 90.0   # degrees

    @property
    def total_corneal_astigmatism(self) -> float:
        return abs(self.k2_power - self.k1_power)

    @property
    def astigmatism_axis(self) -> float:
        return self.k2_axis

    @property
    def astigmatism_type(self) -> AstigmatismType:
        # WTR: steep axis near 90 (80-100); ATR: near 0/180 (<=10 or >=170)
        if 80 <= self.k2_axis <= 100:
            return AstigmatismType.WITH_THE_RULE
        if self.k2_axis <= 10 or self.k2_axis >= 170:
            return AstigmatismType.AGAINST_THE_RULE
        return AstigmatismType.OBLIQUE

    @property
    def is_valid(self) -> bool:
        return (30 < self.k1_power < 60 and 30 < self.k2_power < 60
                and 0 <= self.k1_axis <= 180 and 0 <= self.k2_axis <= 180)


@dataclass
class IncisionData:
    location: IncisionLocation = IncisionLocation.TEMPORAL
    axis: float = 180.0          # degrees, used as-is for ON_AXIS incisions
    size: float = 2.4            # mm
    surgically_induced_astigmatism: float = 0.30  # D


def typical_incision_axis(location: IncisionLocation, eye: Eye,
                          on_axis: float = 0.0) -> float:
    """
    SIA axis for an incision location. Temporal and nasal mirror between eyes.

    Args:
        location: Incision location
        eye: Operated eye
        on_axis: Caller-supplied axis for ON_AXIS incisions
    """
    if location == IncisionLocation.TEMPORAL:
        return 180.0 if eye == Eye.RIGHT else 0.0
    if location == IncisionLocation.SUPERIOR:
        return 90.0
    if location == IncisionLocation.NASAL:
        return 0.0 if eye == Eye.RIGHT else 180.0
    return on_axis


def sia_vector(incision: IncisionData, eye: Eye) -> AstigmatismVector:
    axis = typical_incision_axis(incision.location, eye, on_axis=incision.axis)
    return AstigmatismVector(magnitude=incision.surgically_induced_astigmatism, axis=axis)


def sia_for_size(size_mm: float) -> float:
    """Approximate SIA (D) for a clear-corneal incision size."""
    if size_mm <= 2.0:
        return 0.15
    if size_mm < 2.4:
        return 0.25
    if size_mm < 2.75:
        return 0.35
    if size_mm < 3.0:
        return 0.45
    return 0.50


@dataclass(frozen=True)
class PosteriorNomogram:
    """Posterior corneal astigmatism magnitudes by anterior astigmatism type."""
    wtr_magnitude: float = 0.50
    atr_magnitude: float = 0.25
    oblique_magnitude: float = 0.13
    # Posterior astigmatism is against-the-rule in orientation
    axis_offset: float = 90.0

    def magnitude_for(self, astig_type: AstigmatismType) -> float:
        return {
            AstigmatismType.WITH_THE_RULE: self.wtr_magnitude,
            AstigmatismType.AGAINST_THE_RULE: self.atr_magnitude,
            AstigmatismType.OBLIQUE: self.oblique_magnitude,
        }[astig_type]


BAYLOR_NOMOGRAM = PosteriorNomogram()


def estimate_posterior(anterior: AstigmatismVector, astig_type: AstigmatismType,
                       nomogram: PosteriorNomogram = BAYLOR_NOMOGRAM) -> AstigmatismVector:
    return AstigmatismVector(
        magnitude=nomogram.magnitude_for(astig_type),
        axis=anterior.axis + nomogram.axis_offset,
    )


def classify_correction(iol_cylinder: float, target_magnitude: float,
                        tolerance: float = EXACT_TOLERANCE_D) -> CorrectionType:
    if abs(iol_cylinder - target_magnitude) <= tolerance:
        return CorrectionType.EXACT
    if iol_cylinder > target_magnitude:
        return CorrectionType.OVERCORRECTION
    return CorrectionType.UNDERCORRECTION


@dataclass(frozen=True)
class FullToricAnalysis:
    """Every vector stage of a toric axis calculation. Immutable result value."""
    anterior_astigmatism: AstigmatismVector
    posterior_astigmatism: AstigmatismVector
    total_corneal_astigmatism: AstigmatismVector
    surgically_induced_astigmatism: AstigmatismVector
    post_sia_astigmatism: AstigmatismVector
    residual_astigmatism: AstigmatismVector
    implantation_axis: float
    correction_type: CorrectionType
    eye: Eye
    selected_iol: ToricIOL
    astigmatism_type: AstigmatismType
    includes_posterior: bool
    rationale: List[str] = field(default_factory=list)

    @property
    def target_astigmatism(self) -> AstigmatismVector:
        return self.post_sia_astigmatism

    @property
    def correction_percentage(self) -> float:
        original = self.anterior_astigmatism.magnitude
        if original <= 0:
            return 0.0
        return (original - self.residual_astigmatism.magnitude) / original * 100.0

    @property
    def is_overcorrection(self) -> bool:
        return self.correction_type == CorrectionType.OVERCORRECTION

    @property
    def is_undercorrection(self) -> bool:
        return self.correction_type == CorrectionType.UNDERCORRECTION

    def to_report(self) -> Dict:
        """Flat breakdown for the report collaborator."""
        return {
            "eye": self.eye.value,
            "anterior": self.anterior_astigmatism.format(),
            "posterior": self.posterior_astigmatism.format(),
            "tca": self.total_corneal_astigmatism.format(),
            "sia": self.surgically_induced_astigmatism.format(),
            "post_sia": self.post_sia_astigmatism.format(),
            "residual": self.residual_astigmatism.format(),
            "implantation_axis": round(self.implantation_axis, 1),
            "correction_type": self.correction_type.value,
            "correction_percentage": round(self.correction_percentage, 1),
            "astigmatism_type": self.astigmatism_type.abbreviation,
            "posterior_source": "Baylor nomogram" if self.includes_posterior else "Not included",
            "iol": self.selected_iol.full_name,
        }


@dataclass(frozen=True)
class MisalignmentEffect:
    misalignment_degrees: float
    residual_astigmatism: float
    percentage_correction_lost: float
    is_significant: bool
    is_critical: bool

    @property
    def description(self) -> str:
        if self.is_critical:
            return f"Critical misalignment: {self.percentage_correction_lost:.0f}% of correction lost"
        if self.is_significant:
            return f"Significant misalignment: {self.percentage_correction_lost:.0f}% of correction lost"
        return "Acceptable misalignment"


@dataclass(frozen=True)
class IOLRecommendation:
    iol: ToricIOL
    predicted_residual: float
    is_optimal: bool

    @property
    def description(self) -> str:
        return f"{self.iol.short_name} - Residual: {self.predicted_residual:.2f}D"


def calculate_misalignment_effect(misalignment: float, iol_cylinder: float) -> MisalignmentEffect:
    """
    Residual astigmatism left by a rotated toric lens.

    Residual = 2·C·sin|error|. The share of correction lost is that residual
    relative to the lens cylinder, so 0° loses nothing and 30° loses all of it
    (the residual equals the full cylinder, with a flipped axis).

    Args:
        misalignment: Angular error in degrees (sign ignored)
        iol_cylinder: Lens cylinder in diopters
    """
    error = abs(misalignment)
    residual = 2.0 * iol_cylinder * math.sin(math.radians(error))
    percentage_lost = 2.0 * math.sin(math.radians(error)) * 100.0
    return MisalignmentEffect(
        misalignment_degrees=misalignment,
        residual_astigmatism=residual,
        percentage_correction_lost=percentage_lost,
        is_significant=error >= SIGNIFICANT_MISALIGNMENT_DEG,
        is_critical=error >= CRITICAL_MISALIGNMENT_DEG,
    )


def correct_for_cyclotorsion(original_axis: float, cyclotorsion: float) -> float:
    """Axis to mark after the eye rotated by `cyclotorsion` degrees (positive = clockwise)."""
    return normalize_axis(original_axis - cyclotorsion)


def recommend_iols(target_astigmatism: float,
                   manufacturer: Optional[IOLManufacturer] = None,
                   max_residual: float = 0.50) -> List[IOLRecommendation]:
    """Catalog lenses within 1 D of the target, best first."""
    candidates = models_for(manufacturer) if manufacturer else ALL_TORIC_IOLS
    recommendations = []
    for iol in candidates:
        residual = abs(target_astigmatism - iol.cylinder_power_at_cornea)
        if residual < 1.0:
            recommendations.append(IOLRecommendation(
                iol=iol, predicted_residual=residual, is_optimal=residual < max_residual))
    recommendations.sort(key=lambda r: r.predicted_residual)
    return recommendations


class ToricAxisCalculator:
    """Toric implantation axis calculator."""

    def __init__(self, nomogram: PosteriorNomogram = BAYLOR_NOMOGRAM,
                 exact_tolerance: float = EXACT_TOLERANCE_D):
        self.nomogram = nomogram
        self.exact_tolerance = exact_tolerance

    def target_for(self, keratometry: Keratometry, incision: IncisionData, eye: Eye,
                   include_posterior: bool = True) -> AstigmatismVector:
        """Post-SIA astigmatism the lens has to correct, before a lens is chosen."""
        anterior = AstigmatismVector(
            magnitude=keratometry.total_corneal_astigmatism,
            axis=keratometry.astigmatism_axis,
        )
        tca = anterior
        if include_posterior:
            tca = add(anterior, estimate_posterior(anterior, keratometry.astigmatism_type, self.nomogram))
        return add(tca, sia_vector(incision, eye))

    def select_iol(self, keratometry: Keratometry, incision: IncisionData, eye: Eye,
                   include_posterior: bool = True,
                   manufacturer: Optional[IOLManufacturer] = None) -> Optional[ToricIOL]:
        target = self.target_for(keratometry, incision, eye, include_posterior)
        return find_best_match(target.magnitude, manufacturer)

    def calculate(self,
                  keratometry: Keratometry,
                  incision: IncisionData,
                  iol: ToricIOL,
                  eye: Eye,
                  include_posterior: bool = True) -> FullToricAnalysis:
        """
        Full toric axis analysis.

        Never raises: out-of-range axes are normalized and degenerate input
        (K1 == K2) yields zero vectors. Validate with Keratometry.is_valid upstream.

        Args:
            keratometry: K1/K2 powers and axes
            incision: Incision location, axis and SIA magnitude
            iol: Selected catalog lens
            eye: Operated eye (drives temporal/nasal SIA axis)
            include_posterior: Add the nomogram posterior estimate

        Returns:
            FullToricAnalysis with all six vector stages
        """
        rationale = []

        anterior = AstigmatismVector(
            magnitude=keratometry.total_corneal_astigmatism,
            axis=keratometry.astigmatism_axis,
        )
        astig_type = keratometry.astigmatism_type
        rationale.append(f"Anterior corneal astigmatism: {anterior} ({astig_type.abbreviation})")

        if include_posterior:
            posterior = estimate_posterior(anterior, astig_type, self.nomogram)
            rationale.append(f"Posterior estimate (nomogram): {posterior}")
        else:
            posterior = AstigmatismVector.zero()

        tca = add(anterior, posterior)
        rationale.append(f"Total corneal astigmatism: {tca}")

        sia = sia_vector(incision, eye)
        rationale.append(f"SIA ({incision.location.value}, {eye.value}): {sia}")

        target = add(tca, sia)
        implantation_axis = target.axis
        rationale.append(f"Post-SIA target: {target}")

        cylinder = iol.cylinder_power_at_cornea
        residual_magnitude = abs(target.magnitude - cylinder)
        correction = classify_correction(cylinder, target.magnitude, self.exact_tolerance)

        # An overcorrecting lens leaves residual astigmatism on the flipped axis
        if correction == CorrectionType.OVERCORRECTION:
            residual_axis = normalize_axis(implantation_axis + 90.0)
        else:
            residual_axis = implantation_axis
        residual = AstigmatismVector(magnitude=residual_magnitude, axis=residual_axis)
        rationale.append(f"{iol.full_name} ({cylinder:.2f}D at cornea): {correction.value}, residual {residual}")

        log.info(f"Toric analysis {eye.value}: implant at {implantation_axis:.1f}°, "
                 f"target {target}, residual {residual} ({correction.value})")

        return FullToricAnalysis(
            anterior_astigmatism=anterior,
            posterior_astigmatism=posterior,
            total_corneal_astigmatism=tca,
            surgically_induced_astigmatism=sia,
            post_sia_astigmatism=target,
            residual_astigmatism=residual,
            implantation_axis=implantation_axis,
            correction_type=correction,
            eye=eye,
            selected_iol=iol,
            astigmatism_type=astig_type,
            includes_posterior=include_posterior,
            rationale=rationale,
        )
