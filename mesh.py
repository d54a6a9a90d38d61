"""
Parameter-space meshes.

A parameter mesh is a simplicial discretization of the space of parameter
points (typically Bloch phases). Band extraction only needs its vertices,
its symmetric neighbor relation and its simplices; bands themselves are
returned as meshes embedded in parameter x energy space.

Classes:
    parameter_mesh: Vertices, simplices and symmetric adjacency
"""

import constants
from constants import List, Tuple, Optional, Sequence, Iterable, Any

# Configure logging
logger = constants.logging.getLogger(__name__)


class parameter_mesh:
    """
    Simplicial mesh over a parameter space.

    Attributes:
        dimension (int): Topological dimension of the simplices (vertices per simplex minus one).
        embedding_dimension (int): Dimension of the vertex coordinates.
    """
    def __init__(self, vertices: Any, simplices: Iterable[Sequence[int]],
                 edges: Optional[Iterable[Tuple[int, int]]] = None) -> None:
        """
        Build a mesh from vertex coordinates and simplices.

        Args:
            vertices: Array-like of shape (n_vertices, embedding_dimension).
            simplices: Iterable of vertex-index tuples, all of the same length.
            edges: Optional explicit vertex pairs. If omitted, every pair of
                vertices sharing a simplex is joined.

        Raises:
            constants.dimension_mismatch_error: If vertices have different dimensions.
            constants.mesh_construction_error: If simplices are malformed.
        """
        try:
            vertex_list = [constants.np.asarray(v, dtype=float).reshape(-1) for v in vertices]
            dims = {v.shape[0] for v in vertex_list}
            if len(dims) > 1:
                raise constants.dimension_mismatch_error(f"Mesh vertices of different dimensions: {sorted(dims)}")
            embedding = dims.pop() if dims else 0
            self._vertices = constants.np.array(vertex_list, dtype=float).reshape(len(vertex_list), embedding)
        except constants.bandstructure_error:
            raise
        except (TypeError, ValueError) as e:
            raise constants.mesh_construction_error(f"Invalid mesh vertices: {str(e)}")

        nverts = len(self._vertices)
        simplex_list = [tuple(int(i) for i in s) for s in simplices]
        arities = {len(s) for s in simplex_list}
        if len(arities) > 1:
            raise constants.mesh_construction_error(f"Simplices of different sizes: {sorted(arities)}")
        for s in simplex_list:
            if any(i < 0 or i >= nverts for i in s):
                raise constants.mesh_construction_error(f"Simplex {s} references a vertex outside 0..{nverts - 1}")
            if len(set(s)) != len(s):
                raise constants.mesh_construction_error(f"Simplex {s} repeats a vertex")
        self._simplices = simplex_list
        self.dimension = arities.pop() - 1 if arities else 0
        self.embedding_dimension = embedding

        neighbor_sets = [set() for _ in range(nverts)]
        if edges is None:
            edges = ((s[a], s[b]) for s in simplex_list for a in range(len(s)) for b in range(a + 1, len(s)))
        for i, j in edges:
            i, j = int(i), int(j)
            if i < 0 or i >= nverts or j < 0 or j >= nverts:
                raise constants.mesh_construction_error(f"Edge ({i}, {j}) references a vertex outside 0..{nverts - 1}")
            if i == j:
                continue
            neighbor_sets[i].add(j)
            neighbor_sets[j].add(i)
        self._neighbors = [sorted(n) for n in neighbor_sets]

    @classmethod
    def chain(cls, points: Any) -> "parameter_mesh":
        """
        One-dimensional path mesh: consecutive points are joined by an edge.

        Args:
            points: Sequence of parameter points (scalars are treated as 1D points).

        Returns:
            parameter_mesh: Mesh with simplices (i, i + 1).
        """
        points = [constants.np.atleast_1d(constants.np.asarray(p, dtype=float)) for p in points]
        path = cls(points, [(i, i + 1) for i in range(len(points) - 1)])
        path.dimension = 1
        return path

    def vertex_count(self) -> int:
        return len(self._vertices)

    def vertices(self) -> constants.np.ndarray:
        """Vertex coordinates, shape (n_vertices, embedding_dimension). Index stable."""
        return self._vertices

    def neighbors(self, index: int) -> List[int]:
        """Indices of the vertices joined to `index` by an edge."""
        return self._neighbors[index]

    def edges(self) -> List[Tuple[int, int]]:
        """Undirected edges as (i, j) pairs with i < j."""
        return [(i, j) for i, ns in enumerate(self._neighbors) for j in ns if i < j]

    def simplices(self, dimension: Optional[int] = None) -> List[Tuple[int, ...]]:
        """
        Simplices of the mesh.

        Args:
            dimension: Requested simplex dimension. Only the mesh's own dimension is stored.

        Raises:
            constants.dimension_mismatch_error: If another dimension is requested.
        """
        if dimension is not None and dimension != self.dimension:
            raise constants.dimension_mismatch_error(f"Mesh stores {self.dimension}-simplices, {dimension}-simplices requested")
        return list(self._simplices)

    def adjacency_matrix(self) -> constants.csr_matrix:
        """Symmetric boolean adjacency matrix."""
        n = self.vertex_count()
        rows = [i for i, ns in enumerate(self._neighbors) for _ in ns]
        cols = [j for ns in self._neighbors for j in ns]
        return constants.csr_matrix((constants.np.ones(len(rows), dtype=bool), (rows, cols)), shape=(n, n))

    def submesh(self, mask: Sequence[bool]) -> "parameter_mesh":
        """
        Keep only the vertices where `mask` is True.

        Vertex indices are remapped to 0..n_kept-1 in their original order.
        Simplices touching a dropped vertex are removed, and so are edges.

        Args:
            mask: Boolean sequence of length vertex_count().

        Returns:
            parameter_mesh: The restricted mesh.
        """
        mask = constants.np.asarray(mask, dtype=bool)
        if mask.shape != (self.vertex_count(),):
            raise constants.dimension_mismatch_error(f"Mask of shape {mask.shape} for a mesh of {self.vertex_count()} vertices")
        new_index = constants.np.full(self.vertex_count(), -1, dtype=int)
        new_index[mask] = constants.np.arange(int(mask.sum()))
        simplices = []
        for s in self._simplices:
            remapped = tuple(int(new_index[i]) for i in s)
            if all(i >= 0 for i in remapped):
                simplices.append(remapped)
        edges = [(int(new_index[i]), int(new_index[j])) for i, j in self.edges() if mask[i] and mask[j]]
        logger.debug(f"Submesh keeps {int(mask.sum())}/{self.vertex_count()} vertices and {len(simplices)}/{len(self._simplices)} simplices")
        restricted = parameter_mesh(self._vertices[mask], simplices, edges=edges)
        if not simplices:
            restricted.dimension = self.dimension
        return restricted

    def restrict(self, region: Any) -> "parameter_mesh":
        """Keep the vertices inside `region` (a callable on a single point)."""
        return self.submesh([bool(region(v)) for v in self._vertices])

    def __repr__(self) -> str:
        return (f"parameter_mesh: mesh of a {self.dimension}-dimensional manifold\n"
                f"  Vertices   : {self.vertex_count()}\n"
                f"  Edges      : {len(self.edges())}\n"
                f"  Simplices  : {len(self._simplices)}")
