"""
DeepLabV3 background removal package.

Exposes reusable primitives for loading the segmentation model, building
and feathering stencil masks, and compositing the final cutout.
"""
