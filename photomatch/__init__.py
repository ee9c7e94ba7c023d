"""Photomatch: textured 3D models from calibrated photographs.

Calibrate a photograph from two pairs of lines converging to vanishing
points, build a mesh of planar faces in the recovered world space and export
it as a textured OBJ.
"""

from __future__ import annotations

__version__ = "0.1.0"
