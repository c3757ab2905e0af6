"""DocRisk: risk and fraud scoring for extracted financial documents."""

__version__ = "0.1.0"
