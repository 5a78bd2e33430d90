"""
Optional inference runtimes.

Importing `drivecam_kit` never imports onnxruntime or torch; `load_model`
imports the matching backend on demand. A backend's `infer` takes the
(3, H, W) tensor from `Preprocessor.prepare` and returns the raw output.
"""
