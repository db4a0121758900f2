# document_compliance_service/app/__init__.py
import logging

logger = logging.getLogger(__name__)
logger.info("Document Compliance App Initialized")
