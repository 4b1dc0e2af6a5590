# LabFlow LIMS order and result workflow

__version__ = "1.0.0"
