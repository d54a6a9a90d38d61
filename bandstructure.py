"""
Band structure computation: per-vertex diagonalization and band connection.

The computation runs in two steps:

1. Diagonalize the operator at every vertex of a parameter mesh and store
   the eigenpairs in two tensors, energies (levels x vertices) and states
   (dimension x levels x vertices). This step can be split across worker
   processes, each with its own diagonalizer.
2. Connect eigenpairs of neighboring vertices into bands by following the
   largest eigenvector overlap across every mesh edge.

Classes:
    band: One connected band, a mesh in parameter x energy space with its eigenstates
    band_structure: The ordered list of bands plus the source mesh

Functions:
    diagonalize_mesh: Fill the energy and state tensors over a mesh
    find_most_parallel: Eigenindex at one vertex best overlapping a given state
    extract_band: Grow a single band from a seed cell
    connect_bands: Extract all bands from precomputed tensors
    compute_bandstructure: Full pipeline from an operator and a mesh
"""

from collections import deque
from itertools import product
import constants
from constants import List, Tuple, Optional, Dict, Any, Callable, Sequence, time, mp
from mesh import parameter_mesh
from diagonalizer import diagonalizer
from codiagonalizer import has_degeneracies
from stats import diagonalization_statistics

# Configure logging
logger = constants.logging.getLogger(__name__)

ProgressCallback = Optional[Callable[[int, int], None]]


class band:
    """
    A connected band: vertices (k, energy) with their eigenstates.

    Attributes:
        mesh (parameter_mesh): Band mesh embedded in parameter x energy space.
        states (np.ndarray): Eigenstates of all band vertices, concatenated in vertex order.
        dim_states (int): Length of each eigenstate.
        source_indices (List[Tuple[int, int]]): (eigenindex, mesh vertex) of every band vertex.
    """
    def __init__(self, mesh: parameter_mesh, states: constants.np.ndarray, dim_states: int,
                 source_indices: Sequence[Tuple[int, int]]) -> None:
        if len(states) != mesh.vertex_count() * dim_states:
            raise constants.dimension_mismatch_error(
                f"{len(states)} state entries for {mesh.vertex_count()} vertices of dimension {dim_states}")
        self.mesh = mesh
        self.states = states
        self.dim_states = dim_states
        self.source_indices = list(source_indices)

    def vertex_count(self) -> int:
        return self.mesh.vertex_count()

    def vertices(self) -> constants.np.ndarray:
        return self.mesh.vertices()

    @property
    def simplices(self) -> List[Tuple[int, ...]]:
        return self.mesh.simplices()

    def adjacency_matrix(self) -> constants.csr_matrix:
        return self.mesh.adjacency_matrix()

    def energies(self) -> constants.np.ndarray:
        """Energy coordinate of every band vertex."""
        return self.mesh.vertices()[:, -1]

    def state(self, index: int) -> constants.np.ndarray:
        """Eigenstate of band vertex `index` (a view into `states`)."""
        if not 0 <= index < self.vertex_count():
            raise IndexError(f"Band vertex {index} out of range 0..{self.vertex_count() - 1}")
        return self.states[index * self.dim_states:(index + 1) * self.dim_states]

    def __repr__(self) -> str:
        return (f"band: {self.vertex_count()} vertices, {len(self.mesh.edges())} edges, "
                f"{len(self.simplices)} simplices, states of dimension {self.dim_states}")


class band_structure:
    """
    Result of a band structure computation.

    Attributes:
        bands (List[band]): Bands in discovery order.
        mesh (parameter_mesh): Parameter mesh the bands were computed on.
        statistics (Optional[diagonalization_statistics]): Timings and codiagonalization outcomes.
        element_kind (str): Element kind of the source operator.
    """
    def __init__(self, bands: Sequence[band], mesh: parameter_mesh,
                 statistics: Optional[diagonalization_statistics] = None, element_kind: str = 'scalar') -> None:
        self.bands = list(bands)
        self.mesh = mesh
        self.statistics = statistics
        self.element_kind = element_kind

    def __len__(self) -> int:
        return len(self.bands)

    def __iter__(self):
        return iter(self.bands)

    def __getitem__(self, index: int) -> band:
        return self.bands[index]

    def __repr__(self) -> str:
        return (f"band_structure: bands for a {self.mesh.dimension}D operator\n"
                f"  Bands        : {len(self.bands)}\n"
                f"  Element type : {self.element_kind}\n"
                f"  {self.mesh!r}")


def _report_progress(progress: ProgressCallback, done: int, total: int, step: str) -> None:
    if progress is not None:
        progress(done, total)
    if done % constants.PROGRESS_LOGGING_FREQUENCY == 0 or done == total:
        logger.info(f"{step}: {done}/{total}")


def _diagonalize_vertices(diag: diagonalizer, points: constants.np.ndarray, indices: Sequence[int],
                          stats: diagonalization_statistics, progress: ProgressCallback = None,
                          total: Optional[int] = None) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
    """
    Diagonalize `diag` at the mesh vertices `indices`.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Energies (levels x len(indices)) and
            states (dimension x levels x len(indices)).

    Raises:
        constants.inconsistent_spectrum_error: If a vertex yields a different number of levels than the first.
    """
    count = len(indices)
    energies = constants.np.empty((diag.levels, count), dtype=float)
    states = constants.np.empty((diag.dimension, diag.levels, count), dtype=complex)
    for column, index in enumerate(indices):
        start = time.time()
        values, vectors = diag.eigen_at(points[index])
        if len(values) != energies.shape[0] or vectors.shape != states.shape[:2]:
            raise constants.inconsistent_spectrum_error(
                f"Vertex {index} yielded {len(values)} eigenvalues, expected {energies.shape[0]}")
        energies[:, column] = values
        states[:, :, column] = vectors
        resolved = diag.codiag.last_resolved if diag.codiag is not None else True
        stats.log_vertex(int(index), time.time() - start, degenerate=has_degeneracies(values), resolved=resolved)
        if total is not None:
            _report_progress(progress, column + 1, total, "Diagonalizing")
    return energies, states


def diagonalize_mesh(diag: diagonalizer, mesh: parameter_mesh, progress: ProgressCallback = None,
                     statistics: Optional[diagonalization_statistics] = None) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
    """
    Diagonalize at every mesh vertex with a single diagonalizer.

    Args:
        diag (diagonalizer): Diagonalizer with an operator source.
        mesh (parameter_mesh): Parameter mesh.
        progress: Optional callback called as progress(done, total) after each vertex.
        statistics: Optional collector for timings and codiagonalization outcomes.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Energies of shape (levels, n_vertices) and
            states of shape (dimension, levels, n_vertices).
    """
    stats = statistics if statistics is not None else diagonalization_statistics()
    nk = mesh.vertex_count()
    logger.info(f"Diagonalizing {nk} vertices, {diag.levels} levels of a {diag.dimension}x{diag.dimension} operator")
    return _diagonalize_vertices(diag, mesh.vertices(), range(nk), stats, progress, total=nk)


def _diagonalize_chunk(task: Tuple[Any, constants.diagonalizer_parameters, constants.np.ndarray, Sequence[int]]
                       ) -> Tuple[Sequence[int], constants.np.ndarray, constants.np.ndarray, diagonalization_statistics]:
    """
    Worker: diagonalize one disjoint block of vertices with a private diagonalizer.

    Args:
        task: (operator, parameters, all mesh points, vertex indices of this block).
    """
    operator, parameters, points, indices = task
    diag = diagonalizer.from_parameters(operator, parameters)
    stats = diagonalization_statistics()
    energies, states = _diagonalize_vertices(diag, points, indices, stats)
    return indices, energies, states, stats


def _diagonalize_mesh_parallel(operator: Any, parameters: constants.diagonalizer_parameters, mesh: parameter_mesh,
                               levels: int, num_processes: int, progress: ProgressCallback,
                               stats: diagonalization_statistics) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
    """Split the vertices into contiguous chunks, diagonalize them in a process pool and merge the blocks."""
    nk = mesh.vertex_count()
    points = mesh.vertices()
    chunks = [chunk for chunk in constants.np.array_split(constants.np.arange(nk), min(num_processes, nk)) if len(chunk)]
    tasks = [(operator, parameters, points, chunk.tolist()) for chunk in chunks]
    logger.info(f"Diagonalizing {nk} vertices in {len(tasks)} chunks using {num_processes} processes")

    energies = constants.np.empty((levels, nk), dtype=float)
    states = constants.np.empty((operator.dimension, levels, nk), dtype=complex)
    done = 0
    with mp.Pool(processes=num_processes) as pool:
        for indices, block_energies, block_states, worker_stats in pool.imap_unordered(_diagonalize_chunk, tasks):
            if block_energies.shape[0] != levels:
                raise constants.inconsistent_spectrum_error(
                    f"Worker returned {block_energies.shape[0]} levels for vertices {indices[0]}..{indices[-1]}, expected {levels}")
            energies[:, indices] = block_energies
            states[:, :, indices] = block_states
            stats.merge(worker_stats)
            done += len(indices)
            _report_progress(progress, done, nk, "Diagonalizing")
    return energies, states


def find_most_parallel(states: constants.np.ndarray, dest_k: int, src_e: int, src_k: int) -> Tuple[int, float]:
    """
    Find the eigenindex at vertex `dest_k` whose state best overlaps state (src_e, src_k).

    Exact ties go to the lowest eigenindex.

    Returns:
        Tuple[int, float]: Eigenindex and overlap modulus |<psi(e', dest_k)|psi(src_e, src_k)>|.
    """
    overlaps = constants.np.abs(states[:, :, dest_k].conj().T @ states[:, src_e, src_k])
    best = int(constants.np.argmax(overlaps))
    return best, float(overlaps[best])


def band_simplices(mesh: parameter_mesh, source_indices: Sequence[Tuple[int, int]],
                   edges: Sequence[Tuple[int, int]]) -> List[Tuple[int, ...]]:
    """
    Simplices of a band: groups of band vertices, pairwise joined, sitting over a mesh simplex.

    Args:
        mesh (parameter_mesh): Source parameter mesh.
        source_indices: (eigenindex, mesh vertex) of every band vertex.
        edges: Band adjacency as pairs of band vertex indices.
    """
    adjacent = set()
    for i, j in edges:
        adjacent.add((i, j))
        adjacent.add((j, i))
    over_vertex: Dict[int, List[int]] = {}
    for local, (_, k) in enumerate(source_indices):
        over_vertex.setdefault(k, []).append(local)

    simplices = []
    for simplex in mesh.simplices():
        candidates = [over_vertex.get(k, []) for k in simplex]
        if not all(candidates):
            continue
        for combination in product(*candidates):
            if all((a, b) in adjacent for n, a in enumerate(combination) for b in combination[n + 1:]):
                simplices.append(combination)
    return simplices


def extract_band(mesh: parameter_mesh, seed: Tuple[int, int], energies: constants.np.ndarray,
                 states: constants.np.ndarray, vertindices: constants.np.ndarray,
                 min_projection: float) -> band:
    """
    Grow one band from the unclassified cell `seed` by overlap continuation.

    Cells joined to the band receive consecutive local indices (from 1) in
    `vertindices`. A neighbor cell is joined when it is the best overlap of
    the current cell and that overlap is at least `min_projection`; an edge
    is recorded even if the neighbor already belongs to this band. Cells of
    previously emitted bands (SETTLED) are never joined. When growth stops,
    every cell of this band is marked SETTLED.

    Args:
        mesh (parameter_mesh): Source parameter mesh.
        seed (Tuple[int, int]): (eigenindex, mesh vertex) to start from.
        energies (np.ndarray): Energies, shape (levels, n_vertices).
        states (np.ndarray): States, shape (dimension, levels, n_vertices).
        vertindices (np.ndarray): Classification tensor, modified in place.
        min_projection (float): Minimum overlap for continuation.

    Returns:
        band: The grown band (possibly a single vertex).
    """
    kverts = mesh.vertices()
    vertindices[seed] = 1
    pending = deque([seed])
    cells = [seed]
    edges = []
    while pending:
        e, k = pending.popleft()
        source = vertindices[e, k]
        for k_dest in mesh.neighbors(k):
            e_dest, projection = find_most_parallel(states, k_dest, e, k)
            if projection < min_projection:
                continue
            if vertindices[e_dest, k_dest] == constants.UNCLASSIFIED:
                cells.append((e_dest, k_dest))
                pending.append((e_dest, k_dest))
                vertindices[e_dest, k_dest] = len(cells)
            dest = vertindices[e_dest, k_dest]
            if dest > 0:
                edges.append((source - 1, dest - 1))

    for e, k in cells:
        vertindices[e, k] = constants.SETTLED

    verts = [constants.np.append(kverts[k], energies[e, k]) for e, k in cells]
    dim_states = states.shape[0]
    band_states = constants.np.concatenate([states[:, e, k] for e, k in cells])
    simplices = band_simplices(mesh, cells, edges)
    band_mesh = parameter_mesh(verts, simplices, edges=edges)
    band_mesh.dimension = mesh.dimension
    return band(band_mesh, band_states, dim_states, cells)


def connect_bands(mesh: parameter_mesh, energies: constants.np.ndarray, states: constants.np.ndarray,
                  min_projection: float = constants.DEFAULT_MIN_PROJECTION, progress: ProgressCallback = None,
                  vertindices: Optional[constants.np.ndarray] = None) -> List[band]:
    """
    Extract every band from precomputed eigenpairs.

    Seeds are taken in scan order: lowest eigenindex first within a vertex,
    vertices in increasing order. Bands with no more vertices than the mesh
    dimension have no simplices and are discarded.

    Args:
        mesh (parameter_mesh): Parameter mesh the tensors were computed on.
        energies (np.ndarray): Energies, shape (levels, n_vertices).
        states (np.ndarray): States, shape (dimension, levels, n_vertices).
        min_projection (float): Minimum overlap for continuation.
        progress: Optional callback called as progress(classified_cells, total_cells).
        vertindices: Optional integer array of shape (levels, n_vertices) used as
            the classification tensor; must be all UNCLASSIFIED on entry.

    Returns:
        List[band]: Bands in discovery order.

    Raises:
        constants.dimension_mismatch_error: If the tensor shapes disagree with each other or the mesh.
    """
    constants.validate_fraction(min_projection, "min_projection")
    nlevels, nk = energies.shape
    if states.ndim != 3 or states.shape[1:] != (nlevels, nk) or nk != mesh.vertex_count():
        raise constants.dimension_mismatch_error(
            f"Energies {energies.shape} and states {states.shape} do not match a mesh of {mesh.vertex_count()} vertices")
    if vertindices is None:
        vertindices = constants.np.zeros((nlevels, nk), dtype=int)
    elif vertindices.shape != (nlevels, nk):
        raise constants.dimension_mismatch_error(f"Classification tensor of shape {vertindices.shape}, expected {(nlevels, nk)}")
    else:
        vertindices[...] = constants.UNCLASSIFIED

    total = nlevels * nk
    logger.info(f"Connecting bands over {total} cells with min_projection={min_projection}")
    bands = []
    discarded = 0
    classified = 0
    cursor = 0
    while True:
        # Cells only leave UNCLASSIFIED, so the first unclassified cell never moves backwards
        while cursor < total and vertindices[cursor % nlevels, cursor // nlevels] != constants.UNCLASSIFIED:
            cursor += 1
        if cursor == total:
            break
        seed = (cursor % nlevels, cursor // nlevels)
        new_band = extract_band(mesh, seed, energies, states, vertindices, min_projection)
        nverts = new_band.vertex_count()
        if nverts > mesh.dimension:
            bands.append(new_band)
        else:
            discarded += 1
            logger.debug(f"Discarded band seeded at {seed} with {nverts} vertices")
        classified += nverts
        if progress is not None:
            progress(classified, total)

    logger.info(f"Connected {len(bands)} bands ({discarded} point-like clusters discarded)")
    return bands


def compute_bandstructure(operator: Any, mesh: parameter_mesh, levels: Optional[int] = None,
                          origin: float = constants.DEFAULT_ORIGIN,
                          min_projection: float = constants.DEFAULT_MIN_PROJECTION,
                          codiagonalizer: Optional[str] = 'random', solver: Optional[str] = None,
                          direction_elements: Sequence[int] = constants.DEFAULT_DIRECTION_ELEMENTS,
                          seed: int = constants.DEFAULT_RANDOM_SEED, num_processes: Optional[int] = None,
                          progress: ProgressCallback = None, **solver_options: Any) -> band_structure:
    """
    Compute the band structure of `operator` over `mesh`.

    Args:
        operator: Operator source, e.g. a bloch_operator.
        mesh (parameter_mesh): Parameter mesh whose vertex coordinates are operator parameter points.
        levels: Eigenpairs per vertex, None for the full spectrum.
        origin: Spectral origin; the levels closest to it are kept.
        min_projection: Minimum overlap for band continuation.
        codiagonalizer: 'velocity', 'random' or None.
        solver: Force a backend kind instead of selecting automatically.
        direction_elements: Integer components of velocity directions.
        seed: Seed of the random codiagonalizer.
        num_processes: Worker processes for the diagonalization step (None or 1 runs sequentially).
        progress: Optional callback called as progress(done, total) in both steps.
        **solver_options: Forwarded to the backend call.

    Returns:
        band_structure: Bands, source mesh and run statistics.

    Raises:
        constants.bandstructure_error: Any configuration or diagonalization failure; no partial result is returned.
    """
    try:
        parameters = constants.diagonalizer_parameters(
            levels=levels, origin=origin, min_projection=min_projection, codiagonalizer=codiagonalizer,
            solver=solver, solver_options=tuple(sorted(solver_options.items())),
            direction_elements=tuple(direction_elements), seed=seed)
        diag = diagonalizer.from_parameters(operator, parameters)
        stats = diagonalization_statistics()
        stats.start_time = time.time()

        if num_processes is not None and num_processes > 1 and mesh.vertex_count() > 1:
            energies, states = _diagonalize_mesh_parallel(operator, parameters, mesh, diag.levels,
                                                          num_processes, progress, stats)
        else:
            energies, states = diagonalize_mesh(diag, mesh, progress, stats)

        connection_start = time.time()
        bands = connect_bands(mesh, energies, states, diag.min_projection, progress)
        stats.connection_time = time.time() - connection_start
        stats.log_statistics()
        return band_structure(bands, mesh, stats, getattr(operator, 'element_kind', 'scalar'))
    except constants.bandstructure_error:
        raise
    except Exception as e:
        logger.error(f"Unexpected error in compute_bandstructure: {str(e)}")
        raise constants.bandstructure_error(f"Band structure computation failed: {str(e)}")
