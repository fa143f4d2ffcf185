"""
Halfedge mesh arena for oriented triangle surfaces (closed or with boundary).

Halfedges are paired by index: halfedge ``2*e`` and ``2*e + 1`` form edge
``e``, so ``twin(h) == h ^ 1`` and ``edge(h) == h >> 1``.  Boundary edges
carry an *exterior* halfedge whose face id is ``-1``; exterior halfedges are
linked into boundary loops through ``next``, which makes the one-ring
rotation ``next(twin(h))`` visit every outgoing halfedge of a boundary
vertex as well.

Elements live in flat numpy arrays (the arena).  Mutations never reuse a
slot: removed elements are marked dead and new ones are appended, and
``compress()`` packs the arrays and returns the old-to-new index maps.
Every element carries a generation stamp so that a :class:`Handle` taken
before a mutation can be resolved (or rejected) afterwards.

Usage
-----
    from memdgclib._mesh import HalfedgeMesh

    mesh = HalfedgeMesh.from_faces([[0, 1, 2], [0, 2, 3]])
    e = mesh.find_edge(0, 2)
    m = mesh.split_edge(e)          # new vertex index
    reindex = mesh.compress()       # old->new maps for field arrays
    mesh.validate()
"""

import logging
from collections import namedtuple
from typing import Optional

import numpy as np

from memdgclib._errors import TopologyError

logger = logging.getLogger(__name__)

Handle = namedtuple('Handle', ['kind', 'index', 'generation'])

Reindex = namedtuple(
    'Reindex',
    ['vertices', 'edges', 'faces', 'vertex_map', 'edge_map', 'face_map'],
)
Reindex.__doc__ = """Result of :meth:`HalfedgeMesh.compress`.

``vertices``/``edges``/``faces`` hold the old indices of the survivors in
their new order (use them to gather field arrays); the ``*_map`` arrays map
old index -> new index, with ``-1`` for removed elements.
"""


def _grow(arr: np.ndarray, k: int, fill) -> np.ndarray:
    return np.concatenate([arr, np.full(k, fill, dtype=arr.dtype)])


class HalfedgeMesh:
    """Manifold triangle mesh stored as a halfedge arena.

    Construct with :meth:`from_faces`.  Attributes ending in an underscore
    are the raw arena arrays; prefer the navigation methods.
    """

    def __init__(self, he_next, he_vertex, he_face, v_he, f_he):
        self.he_next_ = np.asarray(he_next, dtype=np.int64)
        self.he_vertex_ = np.asarray(he_vertex, dtype=np.int64)
        self.he_face_ = np.asarray(he_face, dtype=np.int64)
        self.v_he_ = np.asarray(v_he, dtype=np.int64)
        self.f_he_ = np.asarray(f_he, dtype=np.int64)

        nv, ne, nf = len(self.v_he_), len(self.he_next_) // 2, len(self.f_he_)
        self._v_alive = np.ones(nv, dtype=bool)
        self._e_alive = np.ones(ne, dtype=bool)
        self._f_alive = np.ones(nf, dtype=bool)
        self._stamp = 0
        self._v_gen = self._stamps(nv)
        self._e_gen = self._stamps(ne)
        self._f_gen = self._stamps(nf)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_faces(cls, faces, n_vertices: Optional[int] = None) -> 'HalfedgeMesh':
        """Build a mesh from an ``(n_faces, 3)`` array of vertex indices.

        Faces must be consistently oriented.  Non-manifold edges or vertices,
        inconsistent orientation and unreferenced vertices raise
        :class:`TopologyError`.
        """
        faces = np.asarray(faces, dtype=np.int64)
        if faces.ndim != 2 or faces.shape[1] != 3:
            raise TopologyError(
                f"faces must have shape (n, 3), got {faces.shape}")
        if n_vertices is None:
            n_vertices = int(faces.max()) + 1 if faces.size else 0

        edge_id = {}
        first_dir = []
        he_of = {}
        for f, (i, j, k) in enumerate(faces):
            if len({i, j, k}) < 3:
                raise TopologyError(f"face {f} is degenerate: {(i, j, k)}")
            for u, v in ((i, j), (j, k), (k, i)):
                key = (u, v) if u < v else (v, u)
                if key not in edge_id:
                    edge_id[key] = len(first_dir)
                    first_dir.append((u, v))
                e = edge_id[key]
                h = 2 * e if first_dir[e] == (u, v) else 2 * e + 1
                if h in he_of:
                    raise TopologyError(
                        f"edge {key} is shared by more than two faces or "
                        f"the faces are inconsistently oriented")
                he_of[h] = (f, int(u))

        n_edges = len(first_dir)
        he_next = np.full(2 * n_edges, -1, dtype=np.int64)
        he_vertex = np.full(2 * n_edges, -1, dtype=np.int64)
        he_face = np.full(2 * n_edges, -1, dtype=np.int64)
        f_he = np.full(len(faces), -1, dtype=np.int64)

        for f, (i, j, k) in enumerate(faces):
            hs = []
            for u, v in ((i, j), (j, k), (k, i)):
                e = edge_id[(u, v) if u < v else (v, u)]
                hs.append(2 * e if first_dir[e] == (u, v) else 2 * e + 1)
            for n in range(3):
                he_next[hs[n]] = hs[(n + 1) % 3]
                he_vertex[hs[n]] = faces[f, n]
                he_face[hs[n]] = f
            f_he[f] = hs[0]

        # Exterior halfedges along the boundary
        exterior_from = {}
        for e, (u, v) in enumerate(first_dir):
            h = 2 * e + 1
            if h not in he_of:
                he_vertex[h] = v
                if v in exterior_from:
                    raise TopologyError(
                        f"vertex {v} joins more than one boundary loop")
                exterior_from[v] = h
        for v, h in exterior_from.items():
            tip = he_vertex[h ^ 1]
            he_next[h] = exterior_from[tip]

        v_he = np.full(n_vertices, -1, dtype=np.int64)
        # Prefer an exterior halfedge so boundary rotation starts at the gap
        for h in range(2 * n_edges):
            v = he_vertex[h]
            if v_he[v] < 0 or he_face[h] < 0:
                v_he[v] = h
        unused = np.flatnonzero(v_he < 0)
        if len(unused):
            raise TopologyError(f"vertices {unused.tolist()} are not used by any face")

        mesh = cls(he_next, he_vertex, he_face, v_he, f_he)
        mesh.validate()
        return mesh

    def _stamps(self, k: int) -> np.ndarray:
        out = np.arange(self._stamp, self._stamp + k, dtype=np.int64)
        self._stamp += k
        return out

    # ------------------------------------------------------------------
    # Counts and state
    # ------------------------------------------------------------------

    @property
    def n_vertices(self) -> int:
        return int(self._v_alive.sum())

    @property
    def n_edges(self) -> int:
        return int(self._e_alive.sum())

    @property
    def n_faces(self) -> int:
        return int(self._f_alive.sum())

    @property
    def n_halfedges(self) -> int:
        return 2 * self.n_edges

    @property
    def vertex_slots(self) -> int:
        """Arena size for vertices (alive and dead)."""
        return len(self.v_he_)

    @property
    def edge_slots(self) -> int:
        return len(self._e_alive)

    @property
    def is_compressed(self) -> bool:
        """True when no dead slots remain, so indices are dense."""
        return bool(self._v_alive.all() and self._e_alive.all()
                    and self._f_alive.all())

    def vertex_alive(self, v: int) -> bool:
        return bool(self._v_alive[v])

    def edge_alive(self, e: int) -> bool:
        return bool(self._e_alive[e])

    def face_alive(self, f: int) -> bool:
        return bool(self._f_alive[f])

    @property
    def is_closed(self) -> bool:
        alive_he = np.repeat(self._e_alive, 2)
        return not np.any(alive_he & (self.he_face_ < 0))

    def require_compressed(self):
        if not self.is_compressed:
            raise TopologyError(
                "indexed access on an uncompressed mesh; call compress() first")

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @staticmethod
    def twin(h: int) -> int:
        return h ^ 1

    @staticmethod
    def edge(h: int) -> int:
        return h >> 1

    def next(self, h: int) -> int:
        return int(self.he_next_[h])

    def prev(self, h: int) -> int:
        """Halfedge preceding ``h`` in its face or boundary loop."""
        g = h
        for _ in range(len(self.he_next_)):
            n = self.he_next_[g]
            if n == h:
                return int(g)
            g = n
        raise TopologyError(f"halfedge {h} is not on a closed next-cycle")

    def tail(self, h: int) -> int:
        return int(self.he_vertex_[h])

    def tip(self, h: int) -> int:
        return int(self.he_vertex_[h ^ 1])

    def face(self, h: int) -> int:
        return int(self.he_face_[h])

    def is_interior_halfedge(self, h: int) -> bool:
        return self.he_face_[h] >= 0

    def edge_vertices(self, e: int) -> tuple:
        return self.tail(2 * e), self.tip(2 * e)

    def face_vertices(self, f: int) -> tuple:
        h = int(self.f_he_[f])
        hn = self.next(h)
        return self.tail(h), self.tail(hn), self.tail(self.next(hn))

    def outgoing_halfedges(self, v: int) -> list:
        """All halfedges with tail ``v``, in rotation order."""
        return self.outgoing_halfedges_from(int(self.v_he_[v]))

    def vertex_neighbors(self, v: int) -> list:
        return [self.tip(h) for h in self.outgoing_halfedges(v)]

    def degree(self, v: int) -> int:
        return len(self.outgoing_halfedges(v))

    def is_boundary_vertex(self, v: int) -> bool:
        return any(self.he_face_[h] < 0 for h in self.outgoing_halfedges(v))

    def is_boundary_edge(self, e: int) -> bool:
        return self.he_face_[2 * e] < 0 or self.he_face_[2 * e + 1] < 0

    def vertex_edges(self, v: int) -> list:
        return [h >> 1 for h in self.outgoing_halfedges(v)]

    def vertex_faces(self, v: int) -> list:
        return [self.face(h) for h in self.outgoing_halfedges(v)
                if self.he_face_[h] >= 0]

    def find_edge(self, u: int, v: int) -> Optional[int]:
        """Edge joining ``u`` and ``v``, or None."""
        for h in self.outgoing_halfedges(u):
            if self.tip(h) == v:
                return h >> 1
        return None

    # ------------------------------------------------------------------
    # Dense arrays (compressed meshes only)
    # ------------------------------------------------------------------

    @property
    def faces(self) -> np.ndarray:
        """``(n_faces, 3)`` vertex indices, oriented."""
        self.require_compressed()
        h0 = self.f_he_
        h1 = self.he_next_[h0]
        h2 = self.he_next_[h1]
        return np.stack([self.he_vertex_[h0], self.he_vertex_[h1],
                         self.he_vertex_[h2]], axis=1)

    @property
    def edges(self) -> np.ndarray:
        """``(n_edges, 2)`` as (tail, tip) of halfedge ``2*e``."""
        self.require_compressed()
        return np.stack([self.he_vertex_[0::2], self.he_vertex_[1::2]], axis=1)

    @property
    def boundary_edge_mask(self) -> np.ndarray:
        self.require_compressed()
        return (self.he_face_[0::2] < 0) | (self.he_face_[1::2] < 0)

    @property
    def boundary_vertex_mask(self) -> np.ndarray:
        self.require_compressed()
        mask = np.zeros(len(self.v_he_), dtype=bool)
        mask[self.he_vertex_[self.he_face_ < 0]] = True
        return mask

    # ------------------------------------------------------------------
    # Element handles
    # ------------------------------------------------------------------

    def _arena(self, kind: str):
        if kind == 'vertex':
            return self._v_alive, self._v_gen
        if kind == 'edge':
            return self._e_alive, self._e_gen
        if kind == 'face':
            return self._f_alive, self._f_gen
        raise KeyError(f"Unknown element kind: {kind!r}. "
                       f"Available: ['vertex', 'edge', 'face']")

    def handle(self, kind: str, index: int) -> Handle:
        """Generation-stamped identity of an element."""
        alive, gen = self._arena(kind)
        if not alive[index]:
            raise TopologyError(f"{kind} {index} has been removed")
        return Handle(kind, int(index), int(gen[index]))

    def resolve(self, handle: Handle) -> int:
        """Current index of ``handle``; raise :class:`TopologyError` if stale."""
        alive, gen = self._arena(handle.kind)
        i = handle.index
        if i < len(gen) and alive[i] and gen[i] == handle.generation:
            return i
        hits = np.flatnonzero(alive & (gen == handle.generation))
        if len(hits) == 0:
            raise TopologyError(f"stale {handle.kind} handle {tuple(handle)}")
        return int(hits[0])

    # ------------------------------------------------------------------
    # Arena growth
    # ------------------------------------------------------------------

    def _add_vertices(self, k: int) -> np.ndarray:
        first = len(self.v_he_)
        self.v_he_ = _grow(self.v_he_, k, -1)
        self._v_alive = _grow(self._v_alive, k, True)
        self._v_gen = np.concatenate([self._v_gen, self._stamps(k)])
        return np.arange(first, first + k)

    def _add_edges(self, k: int) -> np.ndarray:
        first = len(self._e_alive)
        self.he_next_ = _grow(self.he_next_, 2 * k, -1)
        self.he_vertex_ = _grow(self.he_vertex_, 2 * k, -1)
        self.he_face_ = _grow(self.he_face_, 2 * k, -1)
        self._e_alive = _grow(self._e_alive, k, True)
        self._e_gen = np.concatenate([self._e_gen, self._stamps(k)])
        return np.arange(first, first + k)

    def _add_faces(self, k: int) -> np.ndarray:
        first = len(self.f_he_)
        self.f_he_ = _grow(self.f_he_, k, -1)
        self._f_alive = _grow(self._f_alive, k, True)
        self._f_gen = np.concatenate([self._f_gen, self._stamps(k)])
        return np.arange(first, first + k)

    def _kill_edge(self, e: int):
        self._e_alive[e] = False
        for h in (2 * e, 2 * e + 1):
            self.he_next_[h] = -1
            self.he_vertex_[h] = -1
            self.he_face_[h] = -1

    # ------------------------------------------------------------------
    # Mutation primitives
    # ------------------------------------------------------------------

    def flip(self, e: int) -> bool:
        """Rotate interior edge ``e`` inside its two faces.

        Returns False (mesh untouched) for boundary edges, when the diamond
        tips are already connected, or when an endpoint would lose too many
        neighbours.  The edge keeps its index.
        """
        if self.is_boundary_edge(e):
            return False
        h, t = 2 * e, 2 * e + 1
        hn, tn = self.next(h), self.next(t)
        hnn, tnn = self.next(hn), self.next(tn)
        a, b = self.tail(h), self.tail(t)
        c, d = self.tail(hnn), self.tail(tnn)
        if c == d or self.find_edge(c, d) is not None:
            return False
        for v in (a, b):
            if self.degree(v) <= (2 if self.is_boundary_vertex(v) else 3):
                return False

        f, g = self.face(h), self.face(t)
        self.he_vertex_[h] = d
        self.he_vertex_[t] = c
        self.he_next_[h], self.he_next_[hnn], self.he_next_[tn] = hnn, tn, h
        self.he_next_[t], self.he_next_[tnn], self.he_next_[hn] = tnn, hn, t
        self.he_face_[tn] = f
        self.he_face_[hn] = g
        self.f_he_[f] = h
        self.f_he_[g] = t
        if self.v_he_[a] == h:
            self.v_he_[a] = tn
        if self.v_he_[b] == t:
            self.v_he_[b] = hn
        return True

    def split_edge(self, e: int) -> int:
        """Insert a vertex on edge ``e`` and split its adjacent faces.

        Edge ``e`` keeps the half next to its original tail.  Returns the
        index of the new vertex; its position is up to the caller.
        """
        h, t = 2 * e, 2 * e + 1
        a, b = self.tail(h), self.tail(t)
        fh, ft = self.face(h), self.face(t)
        if fh >= 0:
            hn = self.next(h)
            hnn = self.next(hn)
        else:
            h_after = self.next(h)
        if ft >= 0:
            tn = self.next(t)
            tnn = self.next(tn)
        else:
            t_before = self.prev(t)

        m = int(self._add_vertices(1)[0])
        e2 = int(self._add_edges(1)[0])
        h2, t2 = 2 * e2, 2 * e2 + 1
        self.he_vertex_[h] = a
        self.he_vertex_[h2] = m
        self.he_vertex_[t2] = b
        self.he_vertex_[t] = m

        if fh >= 0:
            c = self.tail(hnn)
            e3 = int(self._add_edges(1)[0])
            h3, t3 = 2 * e3, 2 * e3 + 1
            f2 = int(self._add_faces(1)[0])
            self.he_vertex_[h3], self.he_vertex_[t3] = m, c
            self.he_next_[h], self.he_next_[h3], self.he_next_[hnn] = h3, hnn, h
            self.he_next_[h2], self.he_next_[hn], self.he_next_[t3] = hn, t3, h2
            self.he_face_[h3] = fh
            self.he_face_[h2] = self.he_face_[hn] = self.he_face_[t3] = f2
            self.f_he_[fh], self.f_he_[f2] = h, h2
        else:
            self.he_next_[h] = h2
            self.he_next_[h2] = h_after
            self.he_face_[h2] = -1

        if ft >= 0:
            d = self.tail(tnn)
            e4 = int(self._add_edges(1)[0])
            h4, t4 = 2 * e4, 2 * e4 + 1
            g2 = int(self._add_faces(1)[0])
            self.he_vertex_[h4], self.he_vertex_[t4] = m, d
            self.he_next_[t2], self.he_next_[h4], self.he_next_[tnn] = h4, tnn, t2
            self.he_next_[t], self.he_next_[tn], self.he_next_[t4] = tn, t4, t
            self.he_face_[t2] = self.he_face_[h4] = ft
            self.he_face_[t] = self.he_face_[tn] = self.he_face_[t4] = g2
            self.f_he_[ft], self.f_he_[g2] = t2, t
        else:
            self.he_next_[t_before] = t2
            self.he_next_[t2] = t
            self.he_face_[t2] = -1

        if self.v_he_[b] == t:
            self.v_he_[b] = t2
        # exterior halfedge first on the boundary
        self.v_he_[m] = t if ft < 0 else h2
        return m

    def can_collapse(self, e: int) -> bool:
        """Link condition and degree checks for collapsing edge ``e``."""
        h, t = 2 * e, 2 * e + 1
        a, b = self.tail(h), self.tail(t)
        opposite = {self.tail(self.next(self.next(s)))
                    for s in (h, t) if self.he_face_[s] >= 0}
        common = set(self.vertex_neighbors(a)) & set(self.vertex_neighbors(b))
        if common != opposite:
            return False
        boundary_a = self.is_boundary_vertex(a)
        boundary_b = self.is_boundary_vertex(b)
        if not self.is_boundary_edge(e) and boundary_a and boundary_b:
            return False
        for c in opposite:
            if self.degree(c) <= (2 if self.is_boundary_vertex(c) else 3):
                return False
        merged = self.degree(a) + self.degree(b) - 2 - len(opposite)
        return merged >= (2 if boundary_a or boundary_b else 3)

    def collapse_edge(self, e: int) -> Optional[int]:
        """Merge the tip of halfedge ``2*e`` into its tail.

        Removes the edge, its (one or two) faces and the tip vertex.  Returns
        the surviving vertex, or None (mesh untouched) when the collapse
        would break manifoldness.
        """
        if not self.can_collapse(e):
            return None
        h, t = 2 * e, 2 * e + 1
        a, b = self.tail(h), self.tail(t)
        fh, ft = self.face(h), self.face(t)
        outgoing_b = self.outgoing_halfedges(b)

        # exterior sides first: unlink the removed halfedge from its loop
        for s in (h, t):
            if self.he_face_[s] < 0:
                self.he_next_[self.prev(s)] = self.he_next_[s]

        keep = []
        dead_edges = [e]
        if fh >= 0:
            hn = self.next(h)
            hnn = self.next(hn)
            c = self.tail(hnn)
            x = hn ^ 1
            self._replace(x, hnn)
            if self.v_he_[c] == x:
                self.v_he_[c] = hnn
            dead_edges.append(hn >> 1)
            keep.append(hnn ^ 1)
        if ft >= 0:
            tn = self.next(t)
            tnn = self.next(tn)
            d = self.tail(tnn)
            w = tnn ^ 1
            self._replace(w, tn)
            if self.v_he_[d] == tnn:
                self.v_he_[d] = tn ^ 1
            dead_edges.append(tnn >> 1)
            keep.append(tn)

        dead_he = {2 * k for k in dead_edges} | {2 * k + 1 for k in dead_edges}
        for g in outgoing_b:
            if g not in dead_he:
                self.he_vertex_[g] = a
        for k in dead_edges:
            self._kill_edge(k)
        for f in (fh, ft):
            if f >= 0:
                self._f_alive[f] = False
                self.f_he_[f] = -1
        self._v_alive[b] = False
        self.v_he_[b] = -1

        # rotation start for the survivor, exterior preferred on the boundary
        start = keep[0]
        for g in self.outgoing_halfedges_from(start):
            if self.he_face_[g] < 0:
                start = g
                break
        self.v_he_[a] = start
        return a

    def outgoing_halfedges_from(self, start: int) -> list:
        out = [start]
        h = self.next(start ^ 1)
        while h != start:
            out.append(h)
            if len(out) > len(self.he_next_):
                raise TopologyError("rotation does not close")
            h = self.next(h ^ 1)
        return out

    def _replace(self, old: int, new: int):
        """Put halfedge ``new`` into the cycle position of ``old``."""
        before = self.prev(old)
        after = self.next(old)
        self.he_next_[before] = new
        self.he_next_[new] = after
        f = self.face(old)
        self.he_face_[new] = f
        if f >= 0 and self.f_he_[f] == old:
            self.f_he_[f] = new

    def compress(self) -> Reindex:
        """Pack the arena, dropping dead slots.

        Survivors keep their relative order and generation stamps.
        """
        v_keep = np.flatnonzero(self._v_alive)
        e_keep = np.flatnonzero(self._e_alive)
        f_keep = np.flatnonzero(self._f_alive)

        v_map = np.full(len(self._v_alive), -1, dtype=np.int64)
        v_map[v_keep] = np.arange(len(v_keep))
        e_map = np.full(len(self._e_alive), -1, dtype=np.int64)
        e_map[e_keep] = np.arange(len(e_keep))
        f_map = np.full(len(self._f_alive), -1, dtype=np.int64)
        f_map[f_keep] = np.arange(len(f_keep))
        he_map = np.full(2 * len(self._e_alive), -1, dtype=np.int64)
        he_old = (2 * e_keep[:, None] + np.array([0, 1])).ravel()
        he_map[he_old] = np.arange(len(he_old))

        he_face = self.he_face_[he_old]
        self.he_next_ = he_map[self.he_next_[he_old]]
        self.he_vertex_ = v_map[self.he_vertex_[he_old]]
        self.he_face_ = np.where(he_face >= 0, f_map[he_face], -1)
        self.v_he_ = he_map[self.v_he_[v_keep]]
        self.f_he_ = he_map[self.f_he_[f_keep]]

        self._v_gen = self._v_gen[v_keep]
        self._e_gen = self._e_gen[e_keep]
        self._f_gen = self._f_gen[f_keep]
        self._v_alive = np.ones(len(v_keep), dtype=bool)
        self._e_alive = np.ones(len(e_keep), dtype=bool)
        self._f_alive = np.ones(len(f_keep), dtype=bool)
        logger.debug("compressed mesh to %d vertices, %d edges, %d faces",
                     len(v_keep), len(e_keep), len(f_keep))
        return Reindex(v_keep, e_keep, f_keep, v_map, e_map, f_map)

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """Check the 2-manifold invariants; raise :class:`TopologyError`."""
        alive_he = np.flatnonzero(np.repeat(self._e_alive, 2))
        nxt = self.he_next_
        for h in alive_he:
            n = nxt[h]
            if n < 0 or not self._e_alive[n >> 1]:
                raise TopologyError(f"halfedge {h} points to a dead successor")
            if self.he_vertex_[n] != self.he_vertex_[h ^ 1]:
                raise TopologyError(f"halfedge {h} and its successor do not meet")
            if self.he_face_[n] != self.he_face_[h]:
                raise TopologyError(f"halfedge {h} and its successor disagree on face")
            if self.he_face_[h] >= 0 and nxt[nxt[nxt[h]]] != h:
                raise TopologyError(f"face of halfedge {h} is not a triangle")
        for e in np.flatnonzero(self._e_alive):
            if self.he_face_[2 * e] < 0 and self.he_face_[2 * e + 1] < 0:
                raise TopologyError(f"edge {e} has no incident face")
        for f in np.flatnonzero(self._f_alive):
            h = self.f_he_[f]
            if h < 0 or self.he_face_[h] != f:
                raise TopologyError(f"face {f} has an inconsistent halfedge")

        counts = np.bincount(self.he_vertex_[alive_he],
                             minlength=len(self._v_alive))
        seen_pairs = set()
        for v in np.flatnonzero(self._v_alive):
            h = self.v_he_[v]
            if h < 0 or self.he_vertex_[h] != v:
                raise TopologyError(f"vertex {v} has an inconsistent halfedge")
            ring = self.outgoing_halfedges(v)
            if len(ring) != counts[v]:
                raise TopologyError(f"vertex {v} is non-manifold")
            for g in ring:
                pair = (v, self.tip(g))
                if pair in seen_pairs:
                    raise TopologyError(f"duplicate edge between {pair}")
                seen_pairs.add(pair)
        return True

    def __repr__(self):
        return (f"HalfedgeMesh(n_vertices={self.n_vertices}, "
                f"n_edges={self.n_edges}, n_faces={self.n_faces})")
