#! /usr/bin/python3
# -*- coding: utf-8 -*-
##################################################################################################
# Copyright (c) 2025 Mikio Hirabayashi
#
# Permission is hereby granted, free of charge, to any person obtaining a copy of this software
# and associated documentation files (the "Software"), to deal in the Software without
# restriction, including without limitation the rights to use, copy, modify, merge, publish,
# distribute, sublicense, and/or sell copies of the Software, and to permit persons to whom the
# Software is furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all copies or
# substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR IMPLIED, INCLUDING
# BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM,
# DAMAGES OR OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE SOFTWARE.
##################################################################################################


import argparse
import logging
import math
import os
import re
import shutil
import subprocess
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import cv2
import exifread
import numpy as np
from PIL import Image


PROG_NAME = "pixgrid.py"
PROG_VERSION = "0.0.1"
CMD_EXIFTOOL = "exiftool"
EXTS_IMAGE = [".jpg", ".jpeg", ".png", ".tiff", ".tif", ".bmp", ".webp", ".gif"]
EXTS_PILLOW_PALETTE = [".png", ".gif", ".bmp", ".tiff", ".tif"]
EXTS_EXIFTOOL = [".jpg", ".jpeg", ".tiff", ".tif", ".webp", ".png"]
EXTS_EXIFREAD = [".jpg", ".jpeg", ".tiff", ".tif"]
HIST_BINS = 256
SLIC_ITERATIONS = 10
SLIC_LUMINANCE_WEIGHTS = np.array([0.11, 0.59, 0.3])
HDR_Z_MIN = 0
HDR_Z_MAX = 255
HDR_Z_MID = 127
HDR_PROGRESS_SYSTEM = 0.1
HDR_PROGRESS_SOLVED = 0.8
CONTOUR_OFFSETS_X = (-1, -1, 0, 1, 1, 1, 0, -1)
CONTOUR_OFFSETS_Y = (0, -1, -1, -1, 0, 1, 1, 1)


logging.basicConfig(format="%(message)s", stream=sys.stderr)
logger = logging.getLogger(PROG_NAME)
logger.setLevel(logging.INFO)
cmd_env = os.environ
cmd_env["PATH"] = cmd_env["PATH"] + ":/opt/homebrew/bin"
cmd_env["PATH"] = cmd_env["PATH"] + ":/usr/local/bin"
cv2.setLogLevel(0)


class InvalidArgumentError(ValueError):
  """Raised when an argument of an operation is unusable."""


class MissingMetadataError(ValueError):
  """Raised when an input image lacks metadata the operation needs."""


class CancellationToken:
  """Cooperative cancellation flag with an optional deadline.

  Operations poll the token at fixed points and return a "no result" outcome
  once it is set. Images processed in place may be left partially modified.
  """

  def __init__(self, timeout=None):
    self._event = threading.Event()
    self._deadline = None
    if timeout is not None and timeout > 0:
      self._deadline = time.monotonic() + timeout

  def cancel(self):
    """Requests cancellation."""
    self._event.set()

  def is_cancelled(self):
    """Checks whether cancellation was requested or the deadline has passed."""
    if self._event.is_set():
      return True
    if self._deadline is not None and time.monotonic() >= self._deadline:
      self._event.set()
      return True
    return False


def is_cancelled(cancel):
  """Polls an optional cancellation token."""
  return cancel is not None and cancel.is_cancelled()


def has_command(name):
  """Checks existence of a command."""
  return bool(shutil.which(name))


def mirror_index(index, size):
  """Maps an index into [0, size) by mirroring at the borders."""
  index %= 2 * size
  if index >= size:
    return 2 * size - 1 - index
  return index


def mirror_indices(start, length, size):
  """Maps a range of indices into [0, size) by mirroring at the borders."""
  indices = np.arange(start, start + length) % (2 * size)
  return np.where(indices >= size, 2 * size - 1 - indices, indices)


class ImagePlane:
  """A single 8-bit plane of an image.

  Pixels are held in a NumPy array indexed as [y, x]. The plane always owns a
  private copy of its samples.
  """

  def __init__(self, pixels):
    pixels = np.asarray(pixels)
    if pixels.ndim != 2:
      raise InvalidArgumentError(f"a plane must be two-dimensional: shape={pixels.shape}")
    self.pixels = np.array(pixels, dtype=np.uint8, copy=True)
    self.height, self.width = self.pixels.shape

  @classmethod
  def blank(cls, width, height):
    """Creates a plane filled with zeros."""
    return cls(np.zeros((height, width), dtype=np.uint8))

  @classmethod
  def from_doubles(cls, values):
    """Creates a plane from values in [0, 1], where 1.0 becomes 255."""
    values = np.clip(np.asarray(values, dtype=np.float64), 0, 1)
    return cls(np.round(values * 255).astype(np.uint8))

  def to_doubles(self):
    """Returns the samples as values in [0, 1]."""
    return self.pixels.astype(np.float64) / 255

  def copy(self):
    """Makes a deep copy of the plane."""
    return ImagePlane(self.pixels)

  def get(self, x, y):
    return int(self.pixels[y, x])

  def set(self, x, y, value):
    self.pixels[y, x] = value

  def get_mirrored(self, x, y):
    """Gets a sample, mirroring positions outside of the plane."""
    return int(self.pixels[mirror_index(y, self.height), mirror_index(x, self.width)])

  def region_mirrored(self, x, y, width, height):
    """Gets a window of samples, mirroring positions outside of the plane."""
    ys = mirror_indices(y, height, self.height)
    xs = mirror_indices(x, width, self.width)
    return self.pixels[np.ix_(ys, xs)]

  def set_pixels(self, source):
    """Copies all samples of a plane of the same size into this plane."""
    if source.width != self.width or source.height != self.height:
      raise InvalidArgumentError("the source plane must be of the same size")
    np.copyto(self.pixels, source.pixels)


class PlanarImage:
  """An image made of planes of the same size.

  Planes 0, 1 and 2 are read as R, G and B when there are at least three of
  them. A palette of RGB tuples is kept for indexed single-plane images, and
  numeric metadata such as the exposure time lives in the meta dict.
  """

  def __init__(self, planes, palette=None, meta=None):
    if planes is None or len(planes) == 0:
      raise InvalidArgumentError("at least one plane must be given")
    planes = list(planes)
    width = planes[0].width
    height = planes[0].height
    if any(plane.width != width or plane.height != height for plane in planes):
      raise InvalidArgumentError("all planes must be of the same size")
    self.planes = planes
    self.width = width
    self.height = height
    self.palette = palette
    self.meta = meta if meta is not None else {}
    self._is_grayscale = None

  @classmethod
  def from_array(cls, array, palette=None, meta=None):
    """Creates an image from a byte array of H x W or H x W x C."""
    array = np.asarray(array)
    if array.ndim == 2:
      array = array[:, :, np.newaxis]
    if array.ndim != 3:
      raise InvalidArgumentError(f"unsupported array shape: {array.shape}")
    planes = [ImagePlane(array[:, :, i]) for i in range(array.shape[2])]
    return cls(planes, palette, meta)

  def __getitem__(self, index):
    return self.planes[index]

  def __len__(self):
    return len(self.planes)

  def copy(self):
    """Makes a deep copy of the image."""
    palette = list(self.palette) if self.palette is not None else None
    return PlanarImage([plane.copy() for plane in self.planes], palette, dict(self.meta))

  def to_array(self):
    """Returns all planes stacked as an H x W x C array."""
    return np.dstack([plane.pixels for plane in self.planes])

  @property
  def is_grayscale(self):
    """Whether the first three planes are identical or there are fewer than three."""
    if self._is_grayscale is None:
      if len(self.planes) < 3:
        self._is_grayscale = True
      else:
        first = self.planes[0].pixels
        self._is_grayscale = bool(np.array_equal(first, self.planes[1].pixels) and
                                  np.array_equal(first, self.planes[2].pixels))
    return self._is_grayscale

  @property
  def is_rgb(self):
    """Whether the image has at least three planes and is not grayscale."""
    return len(self.planes) >= 3 and not self.is_grayscale

  def _check_color_planes(self):
    if len(self.planes) < 3:
      raise InvalidArgumentError("the image must have at least three planes")

  def get_pixel(self, x, y):
    """Gets the RGB color of a pixel."""
    self._check_color_planes()
    return tuple(int(self.planes[i].pixels[y, x]) for i in range(3))

  def set_pixel(self, x, y, color):
    """Sets the RGB color of a pixel."""
    self._check_color_planes()
    for i in range(3):
      self.planes[i].pixels[y, x] = color[i]
    self._is_grayscale = None

  def to_rgb_array(self):
    """Returns planes 0, 1 and 2 as an H x W x 3 RGB array."""
    self._check_color_planes()
    return np.dstack([self.planes[i].pixels for i in range(3)])

  def set_rgb_array(self, rgb):
    """Writes an H x W x 3 RGB array into planes 0, 1 and 2."""
    self._check_color_planes()
    if rgb.shape[:2] != (self.height, self.width):
      raise InvalidArgumentError(f"size mismatch: {rgb.shape[:2]} vs {(self.height, self.width)}")
    for i in range(3):
      np.copyto(self.planes[i].pixels, rgb[:, :, i], casting="unsafe")
    self._is_grayscale = None


def count_color_planes(image):
  """Counts the planes carrying color, leaving out the alpha plane."""
  if len(image.planes) >= 3:
    return 3
  return 1


def apply_plane_to_color_planes(image, plane_index=0):
  """Copies one plane onto all other color planes of the image."""
  if plane_index >= len(image.planes):
    raise InvalidArgumentError(f"no such plane: {plane_index}")
  source = image.planes[plane_index]
  for i in range(count_color_planes(image)):
    if i == plane_index:
      continue
    image.planes[i].set_pixels(source)


def generate_random_image(width=64, height=48, plane_count=3, rng=None):
  """Generates an image with random samples."""
  rng = rng if rng is not None else np.random.default_rng()
  pixels = rng.integers(0, 256, size=(height, width, plane_count), dtype=np.uint8)
  return PlanarImage.from_array(pixels)


def generate_colorbar(width=640, height=480):
  """Generates an image of ARIB-like color bar."""
  img = np.zeros((height, width, 3), dtype=np.uint8)
  h1 = int(height * 0.60)
  h2 = int(height * 0.10)
  h3 = int(height * 0.10)
  top_colors = [
    (102, 102, 102),
    (192, 192, 192),
    (255, 255, 0),
    (0, 255, 255),
    (0, 255, 0),
    (255, 0, 255),
    (255, 0, 0),
    (0, 0, 255),
    (102, 102, 102),
  ]
  bar_width = max(width // len(top_colors), 1)
  for i, color in enumerate(top_colors):
    img[0:h1, i*bar_width:(i+1)*bar_width] = color
  img[h1:h1+h2, 0:bar_width] = (0, 255, 255)
  img[h1:h1+h2, bar_width:2*bar_width] = (165, 42, 42)
  img[h1:h1+h2, 2*bar_width:width-bar_width] = (192, 192, 192)
  img[h1:h1+h2, width-bar_width:] = (0, 0, 255)
  ramp_w = max(width - 2 * bar_width, 1)
  img[h1+h2:h1+h2+h3, 0:bar_width] = (255, 255, 0)
  img[h1+h2:h1+h2+h3, width-bar_width:] = (255, 0, 0)
  for i in range(ramp_w):
    val = int(i / ramp_w * 255)
    img[h1+h2:h1+h2+h3, bar_width + i] = (val, val, val)
  gray_values = [255, 192, 128, 64, 38, 15, 0]
  block_w = max(width // len(gray_values), 1)
  for i, val in enumerate(gray_values):
    img[h1+h2+h3:, i*block_w:(i+1)*block_w] = (val, val, val)
  return PlanarImage.from_array(img)


def expand_to_rgb(image):
  """Makes an RGB image out of an indexed or gray image, keeping the alpha plane."""
  if len(image.planes) >= 3:
    return image.copy()
  indices = image.planes[0].pixels
  if image.palette:
    lut = np.zeros((256, 3), dtype=np.uint8)
    entries = np.array(image.palette[:256], dtype=np.uint8).reshape(-1, 3)
    lut[:len(entries)] = entries
    rgb = lut[indices]
  else:
    rgb = np.dstack([indices] * 3)
  planes = [ImagePlane(rgb[:, :, i]) for i in range(3)]
  if len(image.planes) == 2:
    planes.append(image.planes[1].copy())
  return PlanarImage(planes, None, dict(image.meta))


def rgb_to_hsv(rgb):
  """Converts an RGB byte array into hue in [0, 360), saturation and value in [0, 1]."""
  hsv = cv2.cvtColor(rgb.astype(np.float32) / 255, cv2.COLOR_RGB2HSV)
  return hsv[:, :, 0], hsv[:, :, 1], hsv[:, :, 2]


def hsv_to_rgb(hues, saturations, values):
  """Converts hue, saturation and value arrays into an RGB byte array."""
  hsv = cv2.merge((hues.astype(np.float32), saturations.astype(np.float32),
                   values.astype(np.float32)))
  rgb = cv2.cvtColor(hsv, cv2.COLOR_HSV2RGB)
  return np.clip(np.round(rgb * 255), 0, 255).astype(np.uint8)


def rgb_to_cielab(rgb):
  """Converts an RGB byte array into CIE-L*a*b* values."""
  lab = cv2.cvtColor(rgb.astype(np.float32) / 255, cv2.COLOR_RGB2LAB)
  return lab.astype(np.float64)


def cielab_to_rgb(lab):
  """Converts an array of CIE-L*a*b* triples into RGB byte triples."""
  lab = np.asarray(lab, dtype=np.float32)
  shape = lab.shape
  rgb = cv2.cvtColor(lab.reshape(-1, 1, 3), cv2.COLOR_LAB2RGB)
  return np.clip(np.round(rgb * 255), 0, 255).astype(np.uint8).reshape(shape)


def compute_histogram(plane, x=0, y=0, width=None, height=None):
  """Counts sample values over a window of the plane.

  Positions outside of the plane are read mirrored, so the counts always sum
  to width * height.
  """
  width = plane.width if width is None else width
  height = plane.height if height is None else height
  region = plane.region_mirrored(x, y, width, height)
  return np.bincount(region.ravel(), minlength=HIST_BINS).astype(np.int64)


def compute_histogram_from_center(plane, center_x, center_y, width, height):
  """Counts sample values over a window centered on the given position."""
  return compute_histogram(plane, center_x - width // 2, center_y - height // 2, width, height)


def clip_histogram(histogram, clip_limit, pixel_count):
  """Clips the histogram in place and redistributes the excess over all bins.

  The clip level is clip_limit * pixel_count / 256. The excess is spread in a
  single pass, so some bins may exceed the clip level again afterwards.
  """
  if histogram is None:
    raise InvalidArgumentError("the histogram is missing")
  if clip_limit <= 0:
    return histogram
  clip_level = int(round(clip_limit * pixel_count / HIST_BINS))
  excess = int(np.sum(np.maximum(histogram - clip_level, 0)))
  np.minimum(histogram, clip_level, out=histogram)
  histogram += int(round(excess / HIST_BINS))
  return histogram


def equalize_level(cdf, cdf_min, pixel_count):
  """Maps a cumulative count to an output level.

  The level is round((cdf - cdf_min) / (pixel_count - cdf_min) * 255). The
  classic form divides by (pixel_count - 1) instead, which never lets the top
  level reach 255 when the lowest level is populated; a plane of two equally
  frequent values has to map to 0 and 255.
  """
  denominator = max(pixel_count - cdf_min, 1)
  level = round((cdf - cdf_min) / denominator * 255)
  return min(max(level, 0), 255)


def make_equalization_table(histogram, pixel_count):
  """Makes a lookup table from sample values to equalized values."""
  table = np.zeros(HIST_BINS, dtype=np.uint8)
  cdf_min = -1
  cdf = 0
  for value in range(HIST_BINS):
    count = int(histogram[value])
    if count == 0:
      continue
    if cdf_min < 0:
      cdf_min = count
      cdf = count
      continue
    cdf += count
    table[value] = equalize_level(cdf, cdf_min, pixel_count)
  return table


def equalize_value(histogram, value, pixel_count):
  """Equalizes one sample value against a histogram, or returns None if its bin is empty."""
  value = int(value)
  if histogram[value] == 0:
    return None
  counts = histogram[:value + 1]
  nonzero = np.flatnonzero(counts)
  cdf_min = int(counts[nonzero[0]])
  cdf = int(counts.sum())
  return equalize_level(cdf, cdf_min, pixel_count)


def equalize_plane(plane, clip_limit=0, cancel=None):
  """Applies global histogram equalization on a plane in place."""
  pixel_count = plane.width * plane.height
  histogram = compute_histogram(plane)
  clip_histogram(histogram, clip_limit, pixel_count)
  if is_cancelled(cancel):
    return False
  table = make_equalization_table(histogram, pixel_count)
  logger.debug(f"equalization: pixels={pixel_count}, clip_limit={clip_limit},"
               f" levels={int(np.count_nonzero(histogram))}")
  for y in range(plane.height - 1, -1, -1):
    if is_cancelled(cancel):
      return False
    row = plane.pixels[y]
    row[:] = table[row]
  return True


def adaptive_equalize_plane(plane, tile_size=128, clip_limit=0, cancel=None):
  """Applies adaptive histogram equalization on a plane in place.

  A tile_size x tile_size window centered on the current pixel slides over the
  plane in serpentine order. Its histogram is updated by the column or row
  leaving and entering the window instead of being recounted.
  """
  width = plane.width
  height = plane.height
  source = plane.copy()
  pixel_count = tile_size * tile_size
  half = tile_size // 2
  x = 0
  y = 0
  left = x - half
  right = left + tile_size - 1
  top = y - half
  bottom = top + tile_size - 1
  window = compute_histogram(source, left, top, tile_size, tile_size)
  going_right = True
  while True:
    while True:
      if is_cancelled(cancel):
        return False
      if clip_limit > 0:
        histogram = clip_histogram(window.copy(), clip_limit, pixel_count)
      else:
        histogram = window
      level = equalize_value(histogram, source.pixels[y, x], pixel_count)
      if level is not None:
        plane.pixels[y, x] = level
      if going_right:
        if x == width - 1:
          break
        old_column = left
        x += 1
        left += 1
        right += 1
        new_column = right
      else:
        if x == 0:
          break
        old_column = right
        x -= 1
        left -= 1
        right -= 1
        new_column = left
      window -= compute_histogram(source, old_column, top, 1, tile_size)
      window += compute_histogram(source, new_column, top, 1, tile_size)
    if y == height - 1:
      break
    old_row = top
    y += 1
    top += 1
    bottom += 1
    window -= compute_histogram(source, left, old_row, tile_size, 1)
    window += compute_histogram(source, left, bottom, tile_size, 1)
    going_right = not going_right
  return True


def enhance_value_plane(image, process):
  """Runs a plane process on the value channel of an RGB image."""
  if not image.is_rgb:
    raise InvalidArgumentError("the image must be RGB")
  hues, saturations, values = rgb_to_hsv(image.to_rgb_array())
  value_plane = ImagePlane.from_doubles(values)
  if not process(value_plane):
    return False
  image.set_rgb_array(hsv_to_rgb(hues, saturations, value_plane.to_doubles()))
  return True


def enhance_gray_plane(image, process):
  """Runs a plane process on the first plane and copies it to the other color planes."""
  if not process(image.planes[0]):
    return False
  apply_plane_to_color_planes(image, 0)
  return True


def equalize_histogram(image, clip_limit=0, cancel=None):
  """Adjusts the contrast of the image in place by histogram equalization.

  Color images are equalized on the value channel of HSV. Grayscale images are
  equalized on the first plane, which is then copied to the other color
  planes. Returns False if cancelled, in which case the image may be left
  partially modified.
  """
  if image is None:
    raise InvalidArgumentError("the image is missing")
  def process(plane):
    return equalize_plane(plane, clip_limit, cancel)
  if image.is_grayscale:
    return enhance_gray_plane(image, process)
  return enhance_value_plane(image, process)


def adaptive_equalize(image, tile_size=128, clip_limit=0, cancel=None):
  """Adjusts the contrast of the image in place by adaptive histogram equalization.

  The clip limit enables CLAHE; values between 3 and 4 are common. The color
  policy and the cancellation contract are the same as equalize_histogram.
  """
  if image is None:
    raise InvalidArgumentError("the image is missing")
  if tile_size < 1:
    raise InvalidArgumentError(f"invalid tile size: {tile_size}")
  logger.debug(f"adaptive equalization: tile_size={tile_size}, clip_limit={clip_limit}")
  def process(plane):
    return adaptive_equalize_plane(plane, tile_size, clip_limit, cancel)
  if image.is_grayscale:
    return enhance_gray_plane(image, process)
  return enhance_value_plane(image, process)


def compute_slic_grid_interval(width, height, k):
  """Computes the seed spacing S of SLIC."""
  if k < 1:
    raise InvalidArgumentError(f"invalid number of superpixels: {k}")
  interval = int(round(math.sqrt(width * height / k)))
  if interval < 1:
    raise InvalidArgumentError(f"too many superpixels for the image: {k}")
  return interval


def find_lowest_gradient(intensity, x, y):
  """Finds the position of the lowest gradient in the 3x3 neighbourhood."""
  height, width = intensity.shape
  min_gradient = math.inf
  best = (y, x)
  for ny in range(y + 1, y - 2, -1):
    for nx in range(x + 1, x - 2, -1):
      ny_safe = min(max(ny, 0), height - 1)
      nx_safe = min(max(nx, 0), width - 1)
      center = intensity[ny_safe, nx_safe]
      below = intensity[min(max(ny + 1, 0), height - 1), nx_safe]
      right = intensity[ny_safe, min(max(nx + 1, 0), width - 1)]
      gradient = abs(below - center) + abs(right - center)
      if gradient < min_gradient:
        min_gradient = gradient
        best = (ny_safe, nx_safe)
  return best


def seed_slic_clusters(cielab, k, interval, cancel=None):
  """Places k cluster seeds on a regular grid, moved off edges.

  Returns a list of (y, x) positions, or None if cancelled.
  """
  height, width = cielab.shape[:2]
  vertical_margin = interval // 2
  horizontal_margin = interval // 2
  rows = height // interval
  columns = width // interval
  if rows * columns < k:
    count_horizontal = rows * (columns + 1)
    count_vertical = (rows + 1) * columns
    count_both = (rows + 1) * (columns + 1)
    new_horizontal_margin = (width % interval) // 2
    new_vertical_margin = (height % interval) // 2
    if count_horizontal >= k and (count_vertical < k or
                                  new_horizontal_margin > new_vertical_margin):
      horizontal_margin = new_horizontal_margin
    elif count_vertical >= k:
      vertical_margin = new_vertical_margin
    elif count_both >= k:
      horizontal_margin = new_horizontal_margin
      vertical_margin = new_vertical_margin
    else:
      raise InvalidArgumentError(
        f"invalid number of superpixels: {k} for {width}x{height};"
        " the image is too small or the number is too big")
  intensity = cielab @ SLIC_LUMINANCE_WEIGHTS
  x_start = horizontal_margin if horizontal_margin > 0 else -1
  y_start = vertical_margin if vertical_margin > 0 else -1
  x_end = width - max(horizontal_margin, 1)
  y_end = height - max(vertical_margin, 1)
  seeds = []
  for y in range(y_end, y_start - 1, -interval):
    for x in range(x_end, x_start - 1, -interval):
      if is_cancelled(cancel):
        return None
      if len(seeds) == k:
        break
      seeds.append(find_lowest_gradient(intensity, max(x, 0), max(y, 0)))
    if len(seeds) == k:
      break
  if len(seeds) < k:
    raise InvalidArgumentError(f"only {len(seeds)} of {k} superpixels can be seeded")
  return seeds


def assign_slic_clusters(cielab, center_colors, centers, interval, compactness,
                         labels, distances):
  """Labels each pixel with the nearest cluster whose search window covers it."""
  height, width = labels.shape
  spatial_scale = (compactness / interval) ** 2
  for j in range(len(centers) - 1, -1, -1):
    center_y, center_x = int(centers[j, 0]), int(centers[j, 1])
    top = max(center_y - interval, 0)
    bottom = min(center_y + interval, height)
    left = max(center_x - interval, 0)
    right = min(center_x + interval, width)
    if top >= bottom or left >= right:
      continue
    region = cielab[top:bottom, left:right]
    color_distances = np.sum((region - center_colors[j]) ** 2, axis=2)
    ys, xs = np.ogrid[top:bottom, left:right]
    spatial_distances = (ys - center_y) ** 2 + (xs - center_x) ** 2
    combined = np.sqrt(color_distances + spatial_distances * spatial_scale)
    best = distances[top:bottom, left:right]
    closer = combined < best
    best[closer] = combined[closer]
    labels[top:bottom, left:right][closer] = j


def update_slic_clusters(cielab, labels, center_colors, centers):
  """Moves each cluster to the mean color and position of its pixels.

  A cluster without pixels keeps its previous center and color.
  """
  k = len(centers)
  assigned = labels >= 0
  members = labels[assigned]
  counts = np.bincount(members, minlength=k)
  filled = counts > 0
  ys, xs = np.nonzero(assigned)
  for c in range(3):
    sums = np.bincount(members, weights=cielab[:, :, c][assigned], minlength=k)
    center_colors[filled, c] = sums[filled] / counts[filled]
  sums_y = np.bincount(members, weights=ys, minlength=k)
  sums_x = np.bincount(members, weights=xs, minlength=k)
  centers[filled, 0] = (sums_y[filled] // counts[filled]).astype(np.int64)
  centers[filled, 1] = (sums_x[filled] // counts[filled]).astype(np.int64)
  return int(k - np.count_nonzero(filled))


def segment_slic(image, k, compactness=10, cancel=None):
  """Segments the image into superpixels by Simple Linear Iterative Clustering.

  The compactness weighs spatial proximity against color similarity and is
  usable in the range 1 to 40. Returns a tuple of the label grid (H x W, values
  in 0..k-1), the RGB color of each cluster (k x 3) and the center of each
  cluster as (y, x) (k x 2). All three are None if cancelled.

  Each cluster only searches the 2S x 2S window around its center. When the k
  seeds fill just part of the margin-adjusted grid, a strip of the image can
  stay outside every window and keeps the label -1.
  """
  if image is None:
    raise InvalidArgumentError("the image is missing")
  if len(image.planes) < 3:
    raise InvalidArgumentError("the image must have at least three planes")
  interval = compute_slic_grid_interval(image.width, image.height, k)
  logger.debug(f"SLIC: k={k}, compactness={compactness}, interval={interval}")
  cielab = rgb_to_cielab(image.to_rgb_array())
  seeds = seed_slic_clusters(cielab, k, interval, cancel)
  if seeds is None:
    return None, None, None
  centers = np.array(seeds, dtype=np.int64)
  center_colors = cielab[centers[:, 0], centers[:, 1]].copy()
  labels = np.full((image.height, image.width), -1, dtype=np.int32)
  distances = np.full((image.height, image.width), np.inf, dtype=np.float64)
  for iteration in range(SLIC_ITERATIONS):
    labels.fill(-1)
    distances.fill(np.inf)
    if is_cancelled(cancel):
      return None, None, None
    assign_slic_clusters(cielab, center_colors, centers, interval, compactness,
                         labels, distances)
    if is_cancelled(cancel):
      return None, None, None
    num_empty = update_slic_clusters(cielab, labels, center_colors, centers)
    logger.debug(f"SLIC iteration {iteration + 1}: empty_clusters={num_empty},"
                 f" unassigned={int(np.count_nonzero(labels < 0))}")
  colors = cielab_to_rgb(center_colors)
  return labels, colors, centers


def apply_segments(image, labels, colors):
  """Paints each pixel with the color of its segment; unassigned pixels become black."""
  if labels is None or colors is None:
    raise InvalidArgumentError("the segments are missing")
  if labels.shape != (image.height, image.width):
    raise InvalidArgumentError("the labels must be of the same size as the image")
  colors = np.asarray(colors, dtype=np.uint8)
  rgb = colors[np.maximum(labels, 0)]
  rgb[labels < 0] = 0
  image.set_rgb_array(rgb)


def draw_squares(image, locations, side_length, fill, border=None):
  """Draws filled squares centered on (y, x) locations."""
  border = fill if border is None else border
  rgb = image.to_rgb_array()
  half_before = side_length // 2
  half_after = half_before - 1 if side_length % 2 == 0 else half_before
  for square_y, square_x in np.asarray(locations).reshape(-1, 2):
    y_start = min(max(square_y - half_before, 0), image.height - 1)
    y_end = min(max(square_y + half_after, 0), image.height - 1)
    x_start = min(max(square_x - half_before, 0), image.width - 1)
    x_end = min(max(square_x + half_after, 0), image.width - 1)
    rgb[y_start:y_end+1, x_start] = border
    rgb[y_start:y_end+1, x_end] = border
    rgb[y_start, x_start:x_end+1] = border
    rgb[y_end, x_start:x_end+1] = border
    rgb[y_start+1:y_end, x_start+1:x_end] = fill
  image.set_rgb_array(rgb)


def draw_contours(image, labels, color):
  """Draws one pixel wide contours between segments in place.

  A pixel becomes a contour when at least two of its eight neighbours belong
  to another segment and are not contours themselves. The result depends on
  the scan order: rows from bottom to top, columns from right to left.
  Returns the boolean contour mask.
  """
  if image is None or labels is None:
    raise InvalidArgumentError("the image or the labels are missing")
  if len(image.planes) < 3:
    raise InvalidArgumentError("the image must have at least three planes")
  labels = np.asarray(labels)
  if labels.shape != (image.height, image.width):
    raise InvalidArgumentError("the labels must be of the same size as the image")
  height, width = labels.shape
  grid = labels.tolist()
  is_contour = [[False] * width for _ in range(height)]
  for y in range(height - 1, -1, -1):
    row = grid[y]
    for x in range(width - 1, -1, -1):
      label = row[x]
      border_count = 0
      for i in range(7, -1, -1):
        xx = x + CONTOUR_OFFSETS_X[i]
        yy = y + CONTOUR_OFFSETS_Y[i]
        if xx < 0 or xx >= width or yy < 0 or yy >= height:
          continue
        if not is_contour[yy][xx] and grid[yy][xx] != label:
          border_count += 1
      if border_count >= 2:
        is_contour[y][x] = True
  mask = np.array(is_contour, dtype=bool).reshape(height, width)
  rgb = image.to_rgb_array()
  rgb[mask] = color
  image.set_rgb_array(rgb)
  return mask


def hdr_weight(value):
  """Triangular weight of a pixel value, zero at both ends."""
  if value <= HDR_Z_MID:
    return value - HDR_Z_MIN
  return HDR_Z_MAX - value


HDR_WEIGHTS = np.array([hdr_weight(z) for z in range(HDR_Z_MAX + 1)], dtype=np.float64)


def get_log_exposure_times(images):
  """Reads the exposure times from the metadata and returns their logarithms."""
  log_times = []
  for i, image in enumerate(images):
    exposure_time = image.meta.get("_tv_")
    if exposure_time is None or not exposure_time > 0:
      raise MissingMetadataError(f"the image at index {i} has no exposure time")
    log_times.append(math.log(exposure_time))
  return np.array(log_times, dtype=np.float64)


def build_response_system(images, plane_index, sample_ys, sample_xs, log_times, smoothness):
  """Builds the weighted least squares system recovering the response curve of a plane.

  The unknowns are g(0)..g(255) followed by the log irradiance of each sample.
  """
  num_levels = HDR_Z_MAX - HDR_Z_MIN + 1
  num_samples = len(sample_ys)
  num_images = len(images)
  num_rows = num_samples * num_images + 1 + (HDR_Z_MAX - HDR_Z_MIN - 1)
  a = np.zeros((num_rows, num_levels + num_samples), dtype=np.float64)
  b = np.zeros(num_rows, dtype=np.float64)
  samples = np.stack([image.planes[plane_index].pixels[sample_ys, sample_xs]
                      for image in images], axis=1)
  k = 0
  for i in range(num_samples):
    for j in range(num_images):
      z = int(samples[i, j])
      weight = HDR_WEIGHTS[z]
      a[k, z - HDR_Z_MIN] = weight
      a[k, num_levels + i] = -weight
      b[k] = weight * log_times[j]
      k += 1
  a[k, HDR_Z_MID - HDR_Z_MIN] = 1
  k += 1
  for z in range(HDR_Z_MIN + 1, HDR_Z_MAX):
    weight = smoothness * HDR_WEIGHTS[z]
    a[k, z - HDR_Z_MIN - 1] = weight
    a[k, z - HDR_Z_MIN] = -2 * weight
    a[k, z - HDR_Z_MIN + 1] = weight
    k += 1
  return a, b


def solve_least_squares(a, b):
  """Solves an over-determined linear system in the least squares sense by SVD."""
  solution, _, rank, _ = np.linalg.lstsq(a, b, rcond=None)
  logger.debug(f"least squares: shape={a.shape}, rank={rank}")
  return solution


def fuse_radiance(images, plane_index, response, log_times):
  """Fuses the exposures of a plane into a log radiance map."""
  stack = np.stack([image.planes[plane_index].pixels for image in images])
  weights = HDR_WEIGHTS[stack]
  estimates = response[stack.astype(np.int64) - HDR_Z_MIN] - log_times[:, np.newaxis, np.newaxis]
  weight_sums = np.sum(weights, axis=0)
  weighted = np.sum(weights * estimates, axis=0)
  fallback = estimates[len(images) // 2].copy()
  return np.divide(weighted, weight_sums, out=fallback, where=weight_sums > 0)


def reconstruct_hdr(images, sample_count=256, smoothness=10, cancel=None, progress=None,
                    rng=None):
  """Reconstructs a radiance image from differently exposed images of a static scene.

  The response curve of each color plane is recovered by Debevec's method from
  sample_count random pixel positions, and every pixel is fused over all
  exposures. Each image needs its exposure time in meta["_tv_"]. The progress
  callback receives values in [0, 1]. Returns the radiance map quantized to
  bytes, or None if cancelled.
  """
  if images is None or len(images) == 0:
    raise InvalidArgumentError("no images are given")
  if len(images) < 2:
    raise InvalidArgumentError("at least two images must be given")
  height = images[0].height
  width = images[0].width
  if any(image.height != height or image.width != width for image in images):
    raise InvalidArgumentError("all images must be of the same size")
  if any(len(image.planes) < 3 for image in images):
    raise InvalidArgumentError("all images must be RGB")
  if sample_count < 1:
    raise InvalidArgumentError(f"invalid sample count: {sample_count}")
  if smoothness < 0:
    raise InvalidArgumentError(f"invalid smoothness: {smoothness}")
  log_times = get_log_exposure_times(images)
  logger.debug(f"log exposure times: {[float(f'{x:.3f}') for x in log_times]}")
  rng = rng if rng is not None else np.random.default_rng()
  sample_ys = rng.integers(0, height, sample_count)
  sample_xs = rng.integers(0, width, sample_count)
  systems = [build_response_system(images, p, sample_ys, sample_xs, log_times, smoothness)
             for p in range(3)]
  if is_cancelled(cancel):
    return None
  if progress:
    progress(HDR_PROGRESS_SYSTEM)
  with ThreadPoolExecutor(max_workers=3) as executor:
    solutions = list(executor.map(lambda system: solve_least_squares(*system), systems))
  if is_cancelled(cancel):
    return None
  if progress:
    progress(HDR_PROGRESS_SOLVED)
  num_levels = HDR_Z_MAX - HDR_Z_MIN + 1
  radiance = np.stack([fuse_radiance(images, p, solutions[p][:num_levels], log_times)
                       for p in range(3)], axis=2)
  min_value = np.min(radiance)
  max_value = np.max(radiance)
  logger.debug(f"log radiance: min={min_value:.3f}, max={max_value:.3f}")
  if max_value > min_value:
    normalized = (radiance - min_value) / (max_value - min_value)
  else:
    normalized = np.zeros_like(radiance)
  quantized = (np.clip(normalized, 0, 1) * 255).astype(np.uint8)
  return PlanarImage.from_array(quantized)


def load_image(file_path, meta=None):
  """Loads an image as planes of bytes, keeping the palette of indexed images."""
  logger.debug(f"loading image: {file_path}")
  ext = os.path.splitext(file_path)[1].lower()
  meta = meta if meta is not None else {}
  if ext in EXTS_PILLOW_PALETTE:
    with Image.open(file_path) as img:
      if img.mode == "P":
        pixels = np.array(img, dtype=np.uint8)
        flat = img.getpalette() or []
        palette = [tuple(flat[i:i+3]) for i in range(0, len(flat) - 2, 3)]
        logger.debug(f"input image: h={img.height}, w={img.width}, palette={len(palette)}")
        return PlanarImage.from_array(pixels, palette, meta)
  array = cv2.imread(file_path, cv2.IMREAD_UNCHANGED)
  if array is None:
    raise ValueError(f"Failed to load image: {file_path}")
  if array.dtype == np.uint16:
    array = np.round(array.astype(np.float32) / 257).astype(np.uint8)
  elif array.dtype != np.uint8:
    array = (np.clip(array.astype(np.float32), 0, 1) * 255).astype(np.uint8)
  if array.ndim == 3 and array.shape[2] == 3:
    array = cv2.cvtColor(array, cv2.COLOR_BGR2RGB)
  elif array.ndim == 3 and array.shape[2] == 4:
    array = cv2.cvtColor(array, cv2.COLOR_BGRA2RGBA)
  image = PlanarImage.from_array(array, None, meta)
  logger.debug(f"input image: h={image.height}, w={image.width}, planes={len(image)}")
  return image


def save_image(file_path, image):
  """Saves an image, keeping the palette where the format can store it."""
  logger.debug(f"saving image: {file_path}")
  ext = os.path.splitext(file_path)[1].lower()
  if ext not in EXTS_IMAGE:
    raise ValueError(f"Unsupported file format: {ext}")
  num_planes = len(image.planes)
  if num_planes == 1 and image.palette and ext in EXTS_PILLOW_PALETTE:
    img = Image.fromarray(image.planes[0].pixels)
    flat = [int(v) for entry in image.palette for v in entry[:3]]
    img.putpalette(flat)
    img.save(file_path)
    return
  array = image.to_array()
  if num_planes == 1:
    array = array[:, :, 0]
  elif num_planes == 2:
    gray, alpha = array[:, :, 0], array[:, :, 1]
    array = cv2.merge((gray, gray, gray, alpha))
  elif num_planes == 3:
    array = cv2.cvtColor(np.ascontiguousarray(array), cv2.COLOR_RGB2BGR)
  elif num_planes == 4:
    array = cv2.cvtColor(np.ascontiguousarray(array), cv2.COLOR_RGBA2BGRA)
  else:
    raise ValueError(f"Unsupported number of planes: {num_planes}")
  success = cv2.imwrite(file_path, array)
  if not success:
    raise ValueError(f"Failed to save image: {file_path}")


def parse_numeric(text):
  """Parse a numeric expression and get its float value."""
  text = text.lower().strip()
  match = re.fullmatch(r"(-?\d+\.?\d*) */ *(-?\d+\.?\d*)", text)
  if match:
    return float(match.group(1)) / float(match.group(2))
  match = re.fullmatch(r"(-?\d+\.?\d*)", text)
  if match:
    return float(text)
  return float("nan")


def get_metadata(path):
  """Gets Exif data from a image file."""
  meta = {}
  ext = os.path.splitext(path)[1].lower()
  if has_command(CMD_EXIFTOOL) and ext in EXTS_EXIFTOOL:
    cmd = [CMD_EXIFTOOL, "-s", "-t", "-n", path]
    logger.debug(f"running: {' '.join(cmd)}")
    content = subprocess.check_output(
      cmd, stdin=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    lines = content.decode("utf-8", "ignore").split("\n")
    for line in lines:
      fields = line.strip().split("\t", 1)
      if len(fields) < 2: continue
      name, value = fields[:2]
      if name == "ExposureTime":
        meta["_tv_"] = parse_numeric(value)
      if name == "FNumber":
        meta["_fv_"] = parse_numeric(value)
      if name == "ISO":
        meta["_sv_"] = parse_numeric(value)
      if name == "ExposureCompensation":
        meta["_xc_"] = parse_numeric(value)
      if name == "DateTimeOriginal":
        meta["_date_"] = value
  if not meta and ext in EXTS_EXIFREAD:
    with open(path, "rb") as f:
      tags = exifread.process_file(f, details=False)
    for name, value in tags.items():
      value = str(value)
      if name == "EXIF ExposureTime":
        meta["_tv_"] = parse_numeric(value)
      if name == "EXIF FNumber":
        meta["_fv_"] = parse_numeric(value)
      if name == "EXIF ISOSpeedRatings":
        meta["_sv_"] = parse_numeric(value)
      if name == "EXIF ExposureCompensation":
        meta["_xc_"] = parse_numeric(value)
      if name == "EXIF DateTimeOriginal":
        meta["_date_"] = value
  tv = meta.get("_tv_")
  if tv is not None and math.isnan(tv):
    del meta["_tv_"]
  return meta


def parse_color_expr(expr):
  """Parses a color expression and returns a R, G, B tuple of bytes."""
  expr = expr.strip().lower()
  named_colors = {
    "black": "#000000", "white": "#ffffff",
    "red": "#ff0000", "green": "#008000", "blue": "#0000ff",
    "yellow": "#ffff00", "cyan": "#00ffff", "magenta": "#ff00ff",
    "gray": "#808080", "silver": "#c0c0c0", "maroon": "#800000",
    "olive": "#808000", "lime": "#00ff00", "teal": "#008080",
    "navy": "#000080", "fuchsia": "#ff00ff", "aqua": "#00ffff",
    "purple": "#800080", "orange": "#ffa500", "greenyellow": "#adff2f",
  }
  if expr in named_colors:
    expr = named_colors[expr]
  match = re.fullmatch(r"#?([0-9a-fA-F]{3,6})", expr)
  if match:
    expr = match.group(1)
    if len(expr) == 3:
      return int(expr[0] * 2, 16), int(expr[1] * 2, 16), int(expr[2] * 2, 16)
    elif len(expr) == 6:
      return int(expr[0:2], 16), int(expr[2:4], 16), int(expr[4:6], 16)
  raise ValueError(f"invalid color expression '{expr}'")


def parse_name_opts_expression(expr):
  """Parses name:option expression and returns key-value map."""
  expr = expr.strip()
  if re.match(r"^[a-zA-Z]+:", expr):
    fields = re.split(":", expr)
  elif re.match(r"^[a-zA-Z]+,", expr):
    fields = re.split(",", expr)
  elif re.match(r"^[a-zA-Z]+;", expr):
    fields = re.split(";", expr)
  else:
    fields = re.split(r"[ ,\|:;]+", expr)
  params = {"name": fields[0]}
  for field in fields[1:]:
    columns = field.split("=", 1)
    name = columns[0].strip()
    if len(columns) > 1:
      params[name] = columns[1].strip()
    else:
      params[name] = "true"
  return params


def parse_num_opts_expression(expr, defval=0):
  """Parses num:option expression and returns key-value map."""
  expr = expr.strip()
  fields = re.split(r"[ ,\|:;]+", expr)
  try:
    num = float(fields[0])
  except ValueError:
    num = defval
  params = {"num": num}
  for field in fields[1:]:
    columns = field.split("=", 1)
    name = columns[0].strip()
    if len(columns) > 1:
      params[name] = columns[1].strip()
    else:
      params[name] = "true"
  return params


def copy_param_to_kwargs(params, kwargs, name, convert_type=None):
  """Copies an option parameter into the kwargs."""
  if name in params:
    value = params[name]
    if callable(convert_type):
      value = convert_type(value)
    kwargs[name] = value


def parse_exposures_expression(expr):
  """Parses a list of exposure times like 1/100,1/50,1/25."""
  expr = expr.strip()
  if not expr:
    return None
  values = [parse_numeric(field) for field in re.split(r"[ ,\|;]+", expr) if field]
  if any(math.isnan(value) or value <= 0 for value in values):
    raise ValueError(f"invalid exposure expression '{expr}'")
  return values


def set_logging_level(level):
  """Sets the logging level."""
  logger.setLevel(level)


def make_ap_args():
  """Makes arguments of the argument parser."""
  description = "Enhance contrast, segment superpixels, and merge exposures of images."
  version_msg = (f"{PROG_NAME} version {PROG_VERSION}."
                 f" Powered by OpenCV2 {cv2.__version__} and NumPy {np.__version__}.")
  ap = argparse.ArgumentParser(
    prog=PROG_NAME, description=description, epilog=version_msg,
    formatter_class=argparse.RawDescriptionHelpFormatter, allow_abbrev=False)
  ap.add_argument("--version", action='version', version=version_msg)
  ap.add_argument("inputs", nargs='+', help="input image paths")
  ap.add_argument("--output", "-o", default="output.png", metavar="path",
                  help="output image path (default=output.png)")
  ap.add_argument("--merge", "-m", default="none", metavar="name",
                  help="choose a method to merge the input images:"
                  " none (default), hdr. eg. hdr:samples=256:smoothness=10:seed=1")
  ap.add_argument("--exposures", default="", metavar="numlist",
                  help="exposure times of the inputs in seconds. eg. 1/100,1/50,1/25")
  ap.add_argument("--histeq", default="", metavar="name",
                  help="apply histogram equalization: global, adaptive."
                  " eg. global:clip_limit=3, adaptive:tile_size=64:clip_limit=3")
  ap.add_argument("--slic", default="0", metavar="num",
                  help="segment into the number of superpixels. eg. 256:compactness=20")
  ap.add_argument("--contours", default="", metavar="color",
                  help="draw contours of the superpixels in the color. eg. black, #fff")
  ap.add_argument("--centers", default="", metavar="color",
                  help="draw the centers of the superpixels in the color")
  ap.add_argument("--no-fill", "-nf", action='store_true',
                  help="do not paint superpixels with their mean colors")
  ap.add_argument("--timeout", type=float, default=0, metavar="num",
                  help="cancel processing after the seconds. 0 means no limit")
  ap.add_argument("--debug", action='store_true', help="print debug messages")
  return ap.parse_args()


def main():
  """Executes all operations."""
  args = make_ap_args()
  start_time = time.time()
  if args.debug:
    set_logging_level(logging.DEBUG)
  logger.debug(f"{PROG_NAME}={PROG_VERSION},"
               f" OpenCV={cv2.__version__}, NumPy={np.__version__}")
  logger.info(f"Process started: input={args.inputs}, output={args.output}")
  for path in args.inputs:
    if re.fullmatch(r"\[.*\]", path): continue
    if not os.path.exists(path):
      raise ValueError(f"{path} doesn't exist")
  cancel = CancellationToken(args.timeout)
  logger.info(f"Loading the input files")
  images = load_input_images(args)
  image = merge_input_images(args, images, cancel)
  if image is None:
    logger.warning(f"Process cancelled")
    return
  image = edit_image(args, image, cancel)
  if image is None:
    logger.warning(f"Process cancelled")
    return
  logger.info(f"Saving the output file")
  save_image(args.output, image)
  elapsed_time = time.time() - start_time
  logger.info(f"Process done: time={elapsed_time:.2f}s")


def load_input_images(args):
  """Loads input images."""
  images = []
  for input_path in args.inputs:
    match = re.fullmatch(r"\[([a-z].*)+\]", input_path)
    if match:
      ctl_params = parse_name_opts_expression(match.group(1))
      name = ctl_params["name"]
      kwargs = {}
      copy_param_to_kwargs(ctl_params, kwargs, "width", int)
      copy_param_to_kwargs(ctl_params, kwargs, "height", int)
      if name == "colorbar":
        image = generate_colorbar(**kwargs)
      elif name == "random":
        if "planes" in ctl_params:
          kwargs["plane_count"] = int(ctl_params["planes"])
        if "seed" in ctl_params:
          kwargs["rng"] = np.random.default_rng(int(ctl_params["seed"]))
        image = generate_random_image(**kwargs)
      else:
        raise ValueError(f"Unsupported image generation: {name}")
    else:
      ext = os.path.splitext(input_path)[1].lower()
      if ext not in EXTS_IMAGE:
        raise ValueError(f"Unsupported file format: {ext}")
      meta = get_metadata(input_path)
      image = load_image(input_path, meta)
    images.append(image)
  exposures = parse_exposures_expression(args.exposures)
  if exposures:
    if len(exposures) != len(images):
      raise ValueError(f"{len(exposures)} exposures for {len(images)} images")
    for image, exposure in zip(images, exposures):
      image.meta["_tv_"] = exposure
  return images


def log_progress(ratio):
  """Logs the progress ratio."""
  logger.info(f"Progress: {ratio * 100:.0f}%")


def merge_input_images(args, images, cancel):
  """Merges the input images into one image."""
  merge_params = parse_name_opts_expression(args.merge)
  merge_name = merge_params["name"]
  if merge_name in ["none", "n", ""]:
    if len(images) > 1:
      raise ValueError(f"{len(images)} inputs need a merge method")
    return images[0]
  if merge_name in ["hdr", "h", "debevec", "d"]:
    logger.info(f"Reconstructing an HDR radiance image")
    kwargs = {}
    if "samples" in merge_params:
      kwargs["sample_count"] = int(merge_params["samples"])
    copy_param_to_kwargs(merge_params, kwargs, "smoothness", float)
    if "seed" in merge_params:
      kwargs["rng"] = np.random.default_rng(int(merge_params["seed"]))
    return reconstruct_hdr(images, cancel=cancel, progress=log_progress, **kwargs)
  raise ValueError(f"Unknown merge method: {merge_name}")


def edit_image(args, image, cancel):
  """Edits an image; returns None if cancelled."""
  histeq_params = parse_name_opts_expression(args.histeq)
  histeq_name = histeq_params["name"]
  if histeq_name in ["global", "g", "he"]:
    logger.info(f"Applying global histogram equalization")
    kwargs = {}
    copy_param_to_kwargs(histeq_params, kwargs, "clip_limit", float)
    if not equalize_histogram(image, cancel=cancel, **kwargs):
      return None
  elif histeq_name in ["adaptive", "a", "ahe", "clahe"]:
    logger.info(f"Applying adaptive histogram equalization")
    kwargs = {}
    copy_param_to_kwargs(histeq_params, kwargs, "tile_size", int)
    copy_param_to_kwargs(histeq_params, kwargs, "clip_limit", float)
    if not adaptive_equalize(image, cancel=cancel, **kwargs):
      return None
  elif histeq_name not in ["none", ""]:
    raise ValueError(f"Unknown histogram equalization: {histeq_name}")
  slic_params = parse_num_opts_expression(args.slic)
  num_segments = int(slic_params["num"])
  if num_segments > 0:
    logger.info(f"Segmenting the image into {num_segments} superpixels")
    kwargs = {}
    copy_param_to_kwargs(slic_params, kwargs, "compactness", float)
    image = expand_to_rgb(image)
    labels, colors, centers = segment_slic(image, num_segments, cancel=cancel, **kwargs)
    if labels is None:
      return None
    if not args.no_fill:
      apply_segments(image, labels, colors)
    if args.contours:
      logger.info(f"Drawing contours of the superpixels")
      draw_contours(image, labels, parse_color_expr(args.contours))
    if args.centers:
      logger.info(f"Drawing centers of the superpixels")
      draw_squares(image, centers, 5, parse_color_expr(args.centers))
  return image


if __name__ == "__main__":
  main()


# END OF FILE
