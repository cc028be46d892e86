# services/api/routers/analysis.py
from __future__ import annotations

from fastapi import APIRouter

from dependencies import Classifier
from schemas import AnalysisOut, AnalysisRequest

router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.post("", response_model=AnalysisOut)
async def analyze(body: AnalysisRequest, classifier: Classifier):
    """
    Suggest a document type, title and tags for extracted text.
    Only the first 2000 characters are sent to the model.
    """
    analysis = await classifier.analyze(body.text)
    return {
        "document_type": analysis.document_type,
        "title": analysis.title,
        "tags": analysis.tags,
    }
