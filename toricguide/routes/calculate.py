"""
Toric Calculation API Routes
"""

import logging
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from toricguide.audit import write_audit
from toricguide.config import settings
from toricguide.models.api import MisalignmentRequest, MisalignmentResponse, ToricRequest, ToricResponse
from toricguide.services.iol_catalog import ALL_TORIC_IOLS, IOLManufacturer, find_by_model, models_for
from toricguide.services.toric_calculator import (
    IncisionData,
    Keratometry,
    ToricAxisCalculator,
    calculate_misalignment_effect,
    recommend_iols,
    sia_for_size,
)
from toricguide.storage import AUDIT_DIR

log = logging.getLogger(__name__)

router = APIRouter()


def get_calculator() -> ToricAxisCalculator:
    return ToricAxisCalculator()


def get_audit_dir() -> Path:
    return AUDIT_DIR


def _manufacturer(value: Optional[str]) -> Optional[IOLManufacturer]:
    if not value:
        return None
    for manufacturer in IOLManufacturer:
        if value.strip().lower() in (manufacturer.value.lower(), manufacturer.name.lower()):
            return manufacturer
    raise HTTPException(status_code=400, detail=f"Unknown manufacturer: {value}")


@router.post("/toric", response_model=ToricResponse)
def calculate_toric(request: ToricRequest,
                    calculator: ToricAxisCalculator = Depends(get_calculator),
                    audit_dir: Path = Depends(get_audit_dir)) -> ToricResponse:
    """
    Full toric axis analysis for one eye.

    The lens is taken from iol_model/iol_toricity when given; otherwise the
    catalog lens closest to the post-SIA target is chosen.
    """
    k = request.keratometry
    keratometry = Keratometry(k1_power=k.k1_power, k1_axis=k.k1_axis,
                              k2_power=k.k2_power, k2_axis=k.k2_axis)
    if not keratometry.is_valid:
        raise HTTPException(status_code=400, detail="Keratometry out of range (K 30-60 D, axes 0-180°)")

    inc = request.incision
    incision = IncisionData(
        location=inc.location,
        axis=inc.axis,
        size=inc.size,
        surgically_induced_astigmatism=inc.sia if inc.sia is not None else sia_for_size(inc.size),
    )
    include_posterior = (settings.include_posterior_default
                         if request.include_posterior is None else request.include_posterior)
    manufacturer = _manufacturer(request.manufacturer)

    if request.iol_model or request.iol_toricity:
        if not (request.iol_model and request.iol_toricity):
            raise HTTPException(status_code=400, detail="iol_model and iol_toricity must be given together")
        iol = find_by_model(request.iol_model, request.iol_toricity)
        if iol is None:
            raise HTTPException(status_code=404,
                                detail=f"Unknown lens: {request.iol_model} {request.iol_toricity}")
    else:
        iol = calculator.select_iol(keratometry, incision, request.eye, include_posterior, manufacturer)
        if iol is None:
            raise HTTPException(status_code=404, detail="No catalog lens for this manufacturer")

    analysis = calculator.calculate(keratometry, incision, iol, request.eye, include_posterior)
    recommendations = recommend_iols(analysis.target_astigmatism.magnitude, manufacturer)

    response = ToricResponse(
        eye=analysis.eye.value,
        implantation_axis=analysis.implantation_axis,
        correction_type=analysis.correction_type.value,
        correction_percentage=analysis.correction_percentage,
        vectors={
            "anterior": analysis.anterior_astigmatism.to_dict(),
            "posterior": analysis.posterior_astigmatism.to_dict(),
            "total_corneal": analysis.total_corneal_astigmatism.to_dict(),
            "sia": analysis.surgically_induced_astigmatism.to_dict(),
            "target": analysis.post_sia_astigmatism.to_dict(),
            "residual": analysis.residual_astigmatism.to_dict(),
        },
        iol=analysis.selected_iol.to_dict(),
        report=analysis.to_report(),
        rationale=list(analysis.rationale),
        recommendations=[
            {"iol": r.iol.to_dict(), "predicted_residual": r.predicted_residual,
             "is_optimal": r.is_optimal, "description": r.description}
            for r in recommendations
        ],
    )
    write_audit("toric", {"request": request.model_dump(mode="json"), "report": response.report},
                directory=audit_dir)
    return response


@router.post("/misalignment", response_model=MisalignmentResponse)
def misalignment(request: MisalignmentRequest) -> MisalignmentResponse:
    effect = calculate_misalignment_effect(request.misalignment_degrees, request.iol_cylinder)
    return MisalignmentResponse(
        misalignment_degrees=effect.misalignment_degrees,
        residual_astigmatism=effect.residual_astigmatism,
        percentage_correction_lost=effect.percentage_correction_lost,
        is_significant=effect.is_significant,
        is_critical=effect.is_critical,
        description=effect.description,
    )


@router.get("/iols")
def iol_recommendations(target: float = Query(..., ge=0, description="Corneal-plane cylinder to correct (D)"),
                        manufacturer: Optional[str] = None,
                        max_residual: float = Query(0.50, gt=0)) -> List[dict]:
    recommendations = recommend_iols(target, _manufacturer(manufacturer), max_residual)
    return [
        {"iol": r.iol.to_dict(), "predicted_residual": r.predicted_residual,
         "is_optimal": r.is_optimal, "description": r.description}
        for r in recommendations
    ]


@router.get("/catalog")
def catalog(manufacturer: Optional[str] = None) -> List[dict]:
    selected = _manufacturer(manufacturer)
    lenses = models_for(selected) if selected else ALL_TORIC_IOLS
    return [iol.to_dict() for iol in lenses]
