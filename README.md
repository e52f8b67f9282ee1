# biprism

Image analysis for the Fresnel biprism interference experiment. It works on
frames held as NumPy arrays (grayscale `(H, W)`, BGR `(H, W, 3)` or BGRA
`(H, W, 4)`) and does three measurements:

- **Beam alignment** (`biprism.circles`, `biprism.analysis`,
  `biprism.alignment`): finds the light spot with a gradient Hough transform
  or as the geometric centre of a thresholded region, records centre position
  against radius, fits straight lines to x–r and y–r, and says which way to
  move the source.
- **Fringe spacing** (`biprism.fringes`): finds the fringe tilt, turns the
  image so the fringes stand upright, projects the columns and finds peaks
  (or valleys). It reports the mean fringe spacing in pixels and micrometres.
- **Image spacing** (`biprism.spacing`): thresholds the image of the two
  virtual sources, takes the two largest regions and measures the distance
  between their centroids. It also fits a line to the edge of each region and
  reports the mean horizontal distance between the two lines.

Images are loaded and saved with Pillow (`biprism.inputs.load_image`,
`biprism.inputs.save_image`).

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install ".[test]"
```

Python 3.10 or newer is required.

## Library use

### Preprocessing and peak finding

```python
from biprism.imaging import apply_preprocessing, find_peaks, linear_fit

gray = apply_preprocessing(image, 0, 100, 100)   # brightness, contrast, gamma
peaks = find_peaks([0, 3, 1, 5, 2, 0], 1.0, 1)   # -> [1, 3]
fit = linear_fit([(0.0, 1.0), (1.0, 3.0), (2.0, 5.0)])  # -> (2.0, 1.0)
```

`apply_preprocessing` turns a colour image gray, multiplies by
`contrast / 50` and adds `brightness`, then applies a gamma of `gamma / 100`.
With contrast 100 the values are doubled; gamma 100 leaves them unchanged.
`linear_fit` returns `None` for fewer than two points or when all x are equal.

### Fringe analysis

```python
from biprism.inputs import load_image
from biprism.fringes import FringeParams, analyze_fringes, format_fringe_report, fringe_table

frame = load_image("fringes.png")
result = analyze_fringes(frame, FringeParams(), 3.45)   # pixel size in micrometres
print(format_fringe_report(result))
for row in fringe_table(result):
    print(row)
```

`FringeParams` holds brightness, contrast, gamma, the peak threshold, the
minimum peak distance and whether to look for dark fringes (`detect_valleys`).

### Image spacing

```python
from biprism.spacing import SpacingParams, measure_spacing, format_spacing_report

result = measure_spacing(frame, SpacingParams(), 3.45)
print(format_spacing_report(result))
```

`result.found` tells whether two regions were found; the distances in pixels
and micrometres, the mean line spacing and the joining angle are attributes of
the `SpacingResult`.

### Alignment

```python
from biprism.analysis import AnalysisModule

module = AnalysisModule()
for x, y, r in [(320.0, 240.0, 20.0), (322.0, 241.0, 30.0), (324.0, 242.0, 40.0)]:
    module.add_point(x, y, r)
print(module.fit_xr(), module.fit_yr())   # (slope, intercept) of x–r and y–r
```

`move_advice()` gives direction text from those fits once at least two tracks
exist; tracks are built by `add_frame_points`, which matches each frame's
points to the nearest track.

`biprism.alignment.AlignmentSession` puts the detector and the recorder
together for a stream of frames: `process_frame`, `toggle_recording`,
`fit_lines` and `advice`. `biprism.circles.CircleDetectionProcessor` runs
detection alone and caches the result for each frame number.

### Frame sources

`biprism.inputs.StaticImageInput` serves one image file as a frame source
with a short read cache; `biprism.frames.get_frame_manager()` returns a
thread-safe holder of the latest frame.

## What the package does not do

It is a library only. It has no command-line program and no graphical
interface: there are no live image views, sliders or charts, and settings
such as the pixel size are passed as arguments. It does not talk to cameras
or read video; frames come from image files or from arrays you supply.

## Running the tests

```
pytest
```