"""
Document Scanner - Streamlit demo

Thin UI collaborator for the capture pipeline:
- Camera snapshots or uploads act as preview frames
- Live outline overlay of the detected document
- Capture to a flattened, cropped PNG (colour or binarized)
"""

import streamlit as st
from typing import Optional
import numpy as np

from docscanner import (
    CapturePipeline,
    PixelFormat,
    QueueSink,
    ScannerConfig,
    load_config,
)
from docscanner.config import ANGLE_BANDS
from docscanner.imaging import compose_overlay, create_thumbnail, cv2_to_pil, decode_image
from docscanner.logging_config import setup_logging
from docscanner.sources import encode_frame


# Page configuration
st.set_page_config(
    page_title="Document Scanner",
    page_icon="📄",
    layout="wide",
    initial_sidebar_state="expanded"
)

setup_logging()


def init_session_state():
    """Initialize session state variables."""
    if 'pipeline' not in st.session_state:
        st.session_state.pipeline = None
    if 'sink' not in st.session_state:
        st.session_state.sink = None
    if 'pipeline_key' not in st.session_state:
        st.session_state.pipeline_key = None
    if 'preview_size' not in st.session_state:
        st.session_state.preview_size = None
    if 'last_preview' not in st.session_state:
        st.session_state.last_preview = None
    if 'results' not in st.session_state:
        st.session_state.results = []


def sidebar_config() -> ScannerConfig:
    """Scanner options from the sidebar."""
    st.sidebar.title("📄 Scanner Settings")

    document_mode = st.sidebar.toggle(
        "Document mode (binarize)",
        value=False,
        help="Grayscale + adaptive threshold instead of a colour photo"
    )
    debug_overlay = st.sidebar.checkbox(
        "Debug overlay",
        value=False,
        help="Draw all contours (red) and rectangle candidates (blue)"
    )
    strictness = st.sidebar.selectbox(
        "Rectangle strictness",
        list(ANGLE_BANDS.keys()),
        index=0
    )

    with st.sidebar.expander("Edge detection"):
        canny_low = st.slider("Canny low threshold", 0, 255, 15)
        canny_high = st.slider("Canny high threshold", 0, 255, 40)
        target_area = st.number_input(
            "Working pixel area", min_value=50_000, max_value=2_000_000,
            value=853 * 512, step=10_000
        )

    return load_config(
        output_mode='document' if document_mode else 'color',
        debug_overlay=debug_overlay,
        angle_band=strictness,
        canny_low=canny_low,
        canny_high=max(canny_low, canny_high),
        target_pixel_area=int(target_area),
        sensor_offset=0,
    )


def get_pipeline(config: ScannerConfig) -> CapturePipeline:
    """Reuse the session pipeline while the settings are unchanged."""
    key = tuple(sorted(config.to_dict().items(), key=lambda kv: kv[0]))
    key = repr(key)
    if st.session_state.pipeline is None or st.session_state.pipeline_key != key:
        if st.session_state.pipeline is not None:
            st.session_state.pipeline.close()
        sink = QueueSink(keep_overlays=False)
        st.session_state.sink = sink
        st.session_state.pipeline = CapturePipeline(
            config, result_sink=sink, pixel_format=PixelFormat.BGR24
        )
        st.session_state.pipeline_key = key
        st.session_state.preview_size = None
    return st.session_state.pipeline


def process_preview(pipeline: CapturePipeline, image: np.ndarray) -> Optional[np.ndarray]:
    """Feed one snapshot through the pipeline as a preview tick.

    Returns:
        The snapshot with the detected outline drawn, or None if dropped.
    """
    size = (image.shape[1], image.shape[0])
    if st.session_state.preview_size != size:
        pipeline.configure(size, [size])
        st.session_state.preview_size = size

    frames = pipeline.frames
    if frames.publish(encode_frame(image, PixelFormat.BGR24)) is None:
        return None
    frame = frames.acquire_next_frame()
    try:
        result = pipeline.on_preview_frame(frame)
    finally:
        frames.release_frame(frame)

    if result is None:
        return None
    if not result.found:
        st.caption("⚠️ No document outline this frame - last good outline is kept for capture")
    return compose_overlay(image, result.overlay)


def preview_section(pipeline: CapturePipeline):
    """Snapshot input and live outline."""
    st.subheader("📷 Preview")

    source = st.radio("Source", ["Camera", "Upload"], horizontal=True)
    if source == "Camera":
        snapshot = st.camera_input("Point the camera at a document")
    else:
        snapshot = st.file_uploader(
            "Choose a photo of a document",
            type=['jpg', 'jpeg', 'png', 'webp']
        )

    if snapshot is None:
        return

    try:
        image = decode_image(snapshot.getvalue())
    except ValueError as e:
        st.error(f"Could not read image: {str(e)}")
        return

    preview = process_preview(pipeline, image)
    if preview is not None:
        st.session_state.last_preview = preview

    if st.session_state.last_preview is not None:
        st.image(cv2_to_pil(st.session_state.last_preview), use_container_width=True)


def capture_section(pipeline: CapturePipeline):
    """Capture button and rectified results."""
    st.subheader("✂️ Capture")

    if not pipeline.has_capture_data:
        st.info("No document outline detected yet.")

    if st.button("📸 Capture", type="primary", disabled=not pipeline.has_capture_data):
        result = pipeline.request_capture().result()
        if result is None:
            st.warning("Nothing to capture yet.")

    sink = st.session_state.sink
    while True:
        result = sink.next_result(timeout=0)
        if result is None:
            break
        st.session_state.results.insert(0, result)

    for i, result in enumerate(st.session_state.results):
        st.image(cv2_to_pil(result.image), caption=f"{result.width}x{result.height} ({result.mode})")
        st.download_button(
            "⬇️ Download PNG",
            data=result.png,
            file_name=f"scan_{len(st.session_state.results) - i}.png",
            mime="image/png",
            key=f"download_{i}"
        )

    if st.session_state.results:
        st.divider()
        st.caption("History")
        cols = st.columns(4)
        for i, result in enumerate(st.session_state.results):
            with cols[i % 4]:
                st.image(create_thumbnail(result.image))


def main():
    """Main application."""
    init_session_state()

    config = sidebar_config()
    pipeline = get_pipeline(config)

    st.sidebar.divider()
    st.sidebar.metric("Processed frames", pipeline.processed_frames)
    st.sidebar.metric("Dropped frames", pipeline.dropped_frames)

    st.title("📄 Document Scanner")

    col1, col2 = st.columns([3, 2])
    with col1:
        preview_section(pipeline)
    with col2:
        capture_section(pipeline)


if __name__ == "__main__":
    main()
