"""
Fractional Delay Kernel Sources

OpenCL C and CUDA C renditions of the same kernel. One work-item computes
one output sample; the flat id is split into (beam, sample). Per-beam
(delay_integer, lagrange_row) pairs arrive as an int2 array computed on the
host, so neither kernel does any floating-point delay arithmetic.

The kernels read ``input`` and write ``output``, which must be different
buffers. The backends copy ``output`` back over ``input`` afterwards on the
same in-order queue.
"""

KERNEL_NAME = "fractional_delay"

# ---------------------------------------------------------------------- #
# OpenCL C
# ---------------------------------------------------------------------- #

OPENCL_KERNEL_SOURCE = r"""
__kernel void fractional_delay(
    __global const float2 *input,          // [num_beams x num_samples], beam-major
    __global float2 *output,               // same shape, must not alias input
    __constant float *lagrange,            // [48 x 5] weights
    __global const int2 *delay_params,     // [num_beams] (delay_integer, lagrange_row)
    const uint num_beams,
    const uint num_samples)
{
    const size_t gid = get_global_id(0);
    if (gid >= (size_t)num_beams * num_samples) return;

    const int n = (int)num_samples;
    const size_t beam = gid / num_samples;
    const int sample = (int)(gid - beam * num_samples);

    const int2 params = delay_params[beam];
    __global const float2 *src = input + beam * num_samples;
    __constant float *w = lagrange + params.y * 5;

    float2 acc = (float2)(0.0f, 0.0f);
    const int base = sample - params.x - 2;

    for (int i = 0; i < 5; ++i) {
        int idx = base + i;
        if (idx < 0) idx = -idx;
        if (idx >= n) idx = 2 * n - idx - 2;
        if (idx >= 0 && idx < n) {
            const float2 v = src[idx];
            acc.x += w[i] * v.x;
            acc.y += w[i] * v.y;
        }
    }

    output[gid] = acc;
}
"""

# ---------------------------------------------------------------------- #
# CUDA C
# ---------------------------------------------------------------------- #

CUDA_KERNEL_SOURCE = r"""
extern "C" __global__
void fractional_delay(
    const float2* __restrict__ input,         // [num_beams x num_samples], beam-major
    float2* __restrict__ output,              // same shape, must not alias input
    const float* __restrict__ lagrange,       // [48 x 5] weights
    const int2* __restrict__ delay_params,    // [num_beams] (delay_integer, lagrange_row)
    const unsigned int num_beams,
    const unsigned int num_samples)
{
    const unsigned long long gid =
        (unsigned long long)blockDim.x * blockIdx.x + threadIdx.x;
    if (gid >= (unsigned long long)num_beams * num_samples) return;

    const int n = (int)num_samples;
    const unsigned long long beam = gid / num_samples;
    const int sample = (int)(gid - beam * num_samples);

    const int2 params = delay_params[beam];
    const float2* src = input + beam * num_samples;
    const float* w = lagrange + params.y * 5;

    float acc_re = 0.0f;
    float acc_im = 0.0f;
    const int base = sample - params.x - 2;

    for (int i = 0; i < 5; ++i) {
        int idx = base + i;
        if (idx < 0) idx = -idx;
        if (idx >= n) idx = 2 * n - idx - 2;
        if (idx >= 0 && idx < n) {
            const float2 v = src[idx];
            acc_re += w[i] * v.x;
            acc_im += w[i] * v.y;
        }
    }

    output[gid] = make_float2(acc_re, acc_im);
}
"""
