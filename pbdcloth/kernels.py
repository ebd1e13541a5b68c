"""
Cloth solver kernels.

Every kernel takes the number of work items first and loops over it at the top
level, so Taichi runs one parallel invocation per vertex or per constraint.
Projection kernels only read `pred` and only write `corr`, through atomic adds,
so constraints sharing a vertex are summed regardless of invocation order.
"""
import taichi as ti

vec3 = ti.math.vec3


@ti.kernel
def predict_positions(n: ti.i32, pos: ti.template(), vel: ti.template(), mass: ti.template(),
                      normal: ti.template(), pred: ti.template(),
                      gravity: vec3, field_force: vec3, damper: ti.f32, dt: ti.f32):
    for i in range(n):
        m = mass[i]
        if m > 0.0:
            nrm = normal[i]
            # only the component of the field along the surface normal pushes the cloth
            f = field_force.dot(nrm) * nrm
            v1 = vel[i] + gravity * dt + f * dt / m
            # clamped so damping can stop a vertex but never reverse it
            v1 *= ti.max(0.0, 1.0 - damper * dt / m)
            pred[i] = pos[i] + v1 * dt
        else:
            pred[i] = pos[i]


@ti.kernel
def clear_corrections(n: ti.i32, corr: ti.template()):
    for i in range(n):
        corr[i] = ti.Vector([0.0, 0.0, 0.0])


@ti.kernel
def project_distance(n: ti.i32, pred: ti.template(), inv_mass: ti.template(), idx: ti.template(),
                     rest: ti.template(), corr: ti.template(),
                     compress_k: ti.f32, stretch_k: ti.f32, di: ti.f32):
    for c in range(n):
        a, b = idx[c][0], idx[c][1]
        w_a, w_b = inv_mass[a], inv_mass[b]
        w = w_a + w_b
        d = pred[b] - pred[a]
        dist = d.norm()
        if w > 0.0 and dist > 0.0:
            err = dist - rest[c]
            k = stretch_k
            if err < 0.0:
                k = compress_k
            dp = (k * err * di / dist) * d
            ti.atomic_add(corr[a], dp * (w_a / w))
            ti.atomic_add(corr[b], -dp * (w_b / w))


@ti.kernel
def project_bend(n: ti.i32, pred: ti.template(), inv_mass: ti.template(), idx: ti.template(),
                 rest: ti.template(), corr: ti.template(), bend_k: ti.f32, di: ti.f32):
    for c in range(n):
        v, b0, b1, o = idx[c][0], idx[c][1], idx[c][2], idx[c][3]
        if o >= 0:
            w_v, w_o, w_0, w_1 = inv_mass[v], inv_mass[o], inv_mass[b0], inv_mass[b1]
            w = w_v + w_o + w_0 + w_1
            # zero only when the two triangles lie flat in one parallelogram
            h = 0.5 * (pred[b0] + pred[b1]) - 0.5 * (pred[v] + pred[o])
            height = h.norm()
            if w > 0.0 and height > 0.0:
                dp = (bend_k * di * (1.0 - rest[c] / height)) * h
                # weights 2, 2 against -2, -2 keep the mass weighted sum of corrections at zero
                ti.atomic_add(corr[v], dp * (2.0 * w_v / w))
                ti.atomic_add(corr[o], dp * (2.0 * w_o / w))
                ti.atomic_add(corr[b0], -dp * (2.0 * w_0 / w))
                ti.atomic_add(corr[b1], -dp * (2.0 * w_1 / w))


@ti.kernel
def project_pins(n: ti.i32, pred: ti.template(), inv_mass: ti.template(), vertex: ti.template(),
                 anchor: ti.template(), rest: ti.template(), corr: ti.template(), pin_k: ti.f32):
    for c in range(n):
        i = vertex[c]
        d = anchor[c] - pred[i]
        dist = d.norm()
        if inv_mass[i] > 0.0 and dist > 0.0:
            ti.atomic_add(corr[i], (pin_k * (dist - rest[c]) / dist) * d)


@ti.kernel
def project_collisions(n: ti.i32, pred: ti.template(), inv_mass: ti.template(), vertex: ti.template(),
                       point: ti.template(), normal: ti.template(), thickness: ti.template(),
                       corr: ti.template()):
    for c in range(n):
        i = vertex[c]
        nrm = normal[c]
        err = (pred[i] - point[c]).dot(nrm) - thickness[c]
        if inv_mass[i] > 0.0 and err < 0.0:
            ti.atomic_add(corr[i], -err * nrm)


@ti.kernel
def apply_corrections(n: ti.i32, pred: ti.template(), corr: ti.template()):
    for i in range(n):
        pred[i] += corr[i]


@ti.kernel
def commit_positions(n: ti.i32, pos: ti.template(), vel: ti.template(), pred: ti.template(), dt: ti.f32):
    for i in range(n):
        vel[i] = (pred[i] - pos[i]) / dt
        pos[i] = pred[i]
