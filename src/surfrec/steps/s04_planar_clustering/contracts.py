"""I/O contracts for Step 04: Planar clustering."""

from typing import Optional

import numpy as np
from pydantic import Field, InstanceOf

from surfrec.core.cluster_map import ClusterMap
from surfrec.core.mesh import MeshTopology
from surfrec.core.step_base import StepIO


class PlanarClusteringInput(StepIO):
    mesh: InstanceOf[MeshTopology] = Field(..., description="Welded mesh from s03")
    face_normals: Optional[np.ndarray] = Field(
        None, description="(F, 3) face normals; derived from the mesh when omitted"
    )


class PlanarClusteringOutput(StepIO):
    clusters: InstanceOf[ClusterMap] = Field(..., description="Face partition into planar clusters")
    num_clusters: int = Field(0, description="Number of clusters")
    largest_cluster_size: int = Field(0, description="Faces in the largest cluster")
