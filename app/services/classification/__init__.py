from app.services.classification.classifier import PageClassifier, infer_role_from_label

__all__ = ["PageClassifier", "infer_role_from_label"]
