# escape.py
#
# Escape-time kernels for z <- z^2 + c, compiled with numba.
# fastmath stays off: the same inputs must give the same counts on every call
# and from every thread, so the rasterised bitmap is reproducible byte for byte.

from numba import njit


@njit(nogil=True, cache=False)
def _escape_kernel(cx, cy, max_iter):
    x = 0.0
    y = 0.0
    n = 0
    # Escape radius 2, compared squared to skip the sqrt.
    while x * x + y * y <= 4.0 and n < max_iter:
        xt = x * x - y * y + cx
        y = 2.0 * x * y + cy
        x = xt
        n += 1
    return n


@njit(nogil=True, cache=False)
def escape_band(xs, ys, max_iter, out):
    """Fill out[row, col] with the escape count of xs[col] + i*ys[row]."""
    for j in range(ys.shape[0]):
        cy = ys[j]
        for i in range(xs.shape[0]):
            out[j, i] = _escape_kernel(xs[i], cy, max_iter)


def escape_iterations(c: complex, max_iterations: int) -> int:
    """
    Iterations before the orbit of 0 under z^2 + c leaves |z| <= 2.

    Returns ``max_iterations`` when the cap is reached first (interior point).
    A cap of zero or less returns 0 without iterating.
    """
    c = complex(c)
    return int(_escape_kernel(c.real, c.imag, int(max_iterations)))

