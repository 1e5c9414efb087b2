import asyncio

import streamlit as st

from config import ASPECT_RATIOS, MAX_CONCURRENT_REQUESTS, PRESETS_DIR, QUICK_REFINEMENTS, UPLOAD_TYPES
from errors import DuplicateSkuError, PresetExistsError, PresetNotFoundError
from gemini_client import GeminiImageService
from logging_config import configure_logging
from models import BackgroundMode, blur_enabled, reflection_enabled, separation_enabled
from presets import JsonFileBlobStore, PresetStore
from studio import Idle, Outcome, StudioSession
from utils import export_file, fetch_sku_images, load_uploaded_image, parse_sku_input, suggest_filename

configure_logging()

st.set_page_config(page_title="Product Photo Studio", page_icon="📸", layout="wide")


@st.cache_resource
def get_preset_store():
    return PresetStore(JsonFileBlobStore(PRESETS_DIR))


def get_session():
    if "studio" not in st.session_state:
        st.session_state.studio = StudioSession(GeminiImageService(), preset_store=get_preset_store())
        st.session_state.upload_round = 0
    return st.session_state.studio


session = get_session()
state = session.state
config = state.config

BACKGROUND_LABELS = {
    "pure_white": "Pure White",
    "neutral_gray": "Neutral Gray",
    "themed": "Themed",
    "automatic": "Automatic",
}
LIGHTING_LABELS = {"sharp": "Sharp & Energetic", "soft": "Soft & Even"}
VIEW_LABELS = {"original": "Original", "enhanced": "Enhanced"}
SIZE_LABELS = {"2k": "2K", "4k": "4K"}


# widget-state changes must happen in callbacks, before the widgets are drawn again
def run_refinement():
    outcome = asyncio.run(session.refine(st.session_state.refine_command))
    if outcome == Outcome.ACCEPTED:
        st.session_state.refine_command = ""


def notify(kind, message):
    st.session_state.notice = (kind, message)


def improve_refinement():
    st.session_state.refine_command = asyncio.run(session.enhance_refinement(st.session_state.refine_command))


st.title("Product Photo Studio")
st.caption("Turn product photos into professional AI studio shots")

st.markdown("""
**How it works:**
1. 📤 Upload one or more product images (files or catalog SKUs)
2. 🎯 Choose background, lighting and format
3. 🚀 Generate and pick your favourite variant
4. ✏️ Refine it with plain-language commands
5. 📥 Download the final image
""")

st.markdown("---")

# messages queued before a rerun
notice = st.session_state.pop("notice", None)
if notice:
    getattr(st, notice[0])(notice[1])

left, right = st.columns(2)

# LEFT PANEL: configuration and generation
with left:
    st.header("📤 Step 1: Upload Your Images")
    uploaded_files = st.file_uploader(
        "Choose image files",
        type=UPLOAD_TYPES,
        accept_multiple_files=True,
        key=f"uploader_{st.session_state.upload_round}",
        help="PNG, JPG, WEBP work best; HEIC, TIFF and GIF are converted automatically",
    )
    if uploaded_files and st.button("➕ Add uploaded images"):
        new_images = []
        for uploaded_file in uploaded_files:
            try:
                new_images.append(load_uploaded_image(uploaded_file))
            except ValueError as e:
                st.error(f"Could not load {uploaded_file.name}: {str(e)}")
        session.add_images(new_images)
        st.session_state.upload_round += 1
        st.rerun()

    sku_text = st.text_input("Or import by SKU", placeholder="Enter one or more SKUs separated by commas")
    if st.button("🔎 Import SKUs", disabled=not sku_text.strip()):
        skus = parse_sku_input(sku_text)
        try:
            images, errors = asyncio.run(fetch_sku_images(skus, state.images))
        except DuplicateSkuError as e:
            st.error(f"❌ {e}")
        else:
            session.add_images(images)
            for message in errors:
                st.warning(f"⚠️ {message}")
            if images:
                st.success(f"✅ Imported {len(images)} image(s)")

    if state.images:
        st.success(f"✅ {len(state.images)} image(s) ready")
        cols = st.columns(min(3, len(state.images)))
        for i, image in enumerate(state.images):
            with cols[i % len(cols)]:
                st.image(image.data, caption=image.name, use_container_width=True)
                b1, b2, b3 = st.columns(3)
                if b1.button("◀", key=f"left_{i}", disabled=i == 0 or session.is_loading):
                    session.move_image(i, i - 1)
                    st.rerun()
                if b2.button("🗑", key=f"remove_{i}", disabled=session.is_loading):
                    session.remove_image(i)
                    st.rerun()
                if b3.button("▶", key=f"right_{i}", disabled=i == len(state.images) - 1 or session.is_loading):
                    session.move_image(i, i + 1)
                    st.rerun()
        if st.button("🧹 Clear all images", disabled=session.is_loading):
            session.clear_images()
            st.rerun()
    else:
        st.info("👆 Upload one or more images to get started")

    st.header("🎯 Step 2: Configure the Shot")
    image_count = len(state.images)

    background = st.radio(
        "Background",
        options=[m.value for m in BackgroundMode],
        format_func=lambda v: BACKGROUND_LABELS[v],
        index=[m.value for m in BackgroundMode].index(config.background_mode.value),
        horizontal=True,
        help="White and gray are for catalogs. Themed lets you describe a scene. Automatic lets the AI pick one.",
    )
    session.update_config("background_mode", background)

    if session.state.config.background_mode == BackgroundMode.THEMED:
        keywords = st.text_input(
            "Describe the scene",
            value=session.state.config.background_keywords,
            placeholder="e.g. 'on a wooden table with plants'",
        )
        session.update_config("background_keywords", keywords)
        if st.button(
            "✨ Improve description",
            disabled=not keywords.strip() or session.is_loading or session.state.enhancing,
        ):
            asyncio.run(session.enhance_background_keywords())
            st.rerun()

    lighting = st.radio(
        "Lighting",
        options=list(LIGHTING_LABELS),
        format_func=lambda v: LIGHTING_LABELS[v],
        index=list(LIGHTING_LABELS).index(config.lighting_style.value),
        horizontal=True,
    )
    session.update_config("lighting_style", lighting)

    c1, c2 = st.columns(2)
    with c1:
        aspect = st.radio(
            "Format",
            options=list(ASPECT_RATIOS),
            format_func=lambda v: ASPECT_RATIOS[v]["label"],
            index=list(ASPECT_RATIOS).index(config.aspect_ratio.value),
        )
        session.update_config("aspect_ratio", aspect)
    with c2:
        size = st.radio(
            "Output size",
            options=list(SIZE_LABELS),
            format_func=lambda v: SIZE_LABELS[v],
            index=list(SIZE_LABELS).index(config.output_size.value),
        )
        session.update_config("output_size", size)

    view = st.radio(
        "Product appearance",
        options=list(VIEW_LABELS),
        format_func=lambda v: VIEW_LABELS[v],
        index=list(VIEW_LABELS).index(config.product_view.value),
        horizontal=True,
        help="Original keeps the product exactly as uploaded. Enhanced subtly boosts colors and textures.",
    )
    session.update_config("product_view", view)

    current = session.state.config
    reflection = st.checkbox("Floor reflection", value=current.add_reflection, disabled=not reflection_enabled(current))
    session.update_config("add_reflection", reflection)

    separate = st.checkbox(
        "Keep products separated",
        value=current.separate_products,
        disabled=not separation_enabled(current, image_count),
        help="Only available with two or more images",
    )
    session.update_config("separate_products", separate)
    if separate and separation_enabled(current, image_count):
        separation = st.slider("Separation", 0, 100, current.product_separation)
        session.update_config("product_separation", separation)

    if blur_enabled(current):
        blur = st.slider("Background blur", 0, 100, current.background_blur)
        session.update_config("background_blur", blur)

    st.subheader("💾 Presets")
    store_names = [p.name for p in session.presets()]
    p1, p2 = st.columns(2)
    with p1:
        chosen = st.selectbox("Load a preset", options=[""] + store_names, format_func=lambda n: n or "Choose...")
        if st.button("📂 Load", disabled=not chosen):
            session.load_preset(chosen)
            notify("success", f"✅ Loaded preset '{chosen}'")
            st.rerun()
        confirm_delete = st.checkbox("Confirm delete", key="confirm_delete", disabled=not chosen)
        if st.button("🗑 Delete", disabled=not (chosen and confirm_delete)):
            try:
                session.delete_preset(chosen)
                st.success(f"✅ Deleted preset '{chosen}'")
            except PresetNotFoundError as e:
                st.error(f"❌ {e}")
    with p2:
        preset_name = st.text_input("Preset name", placeholder="e.g. Catalog white 1:1")
        name_taken = bool(preset_name.strip()) and get_preset_store().exists(preset_name)
        overwrite = st.checkbox("Overwrite if it exists", disabled=not name_taken)
        if name_taken and not overwrite:
            st.caption("ℹ️ A preset with this name already exists. Tick overwrite to replace it.")
        if st.button("💾 Save current", disabled=not preset_name.strip() or (name_taken and not overwrite)):
            try:
                session.save_preset(preset_name, overwrite=overwrite)
                st.success(f"✅ Saved preset '{preset_name.strip()}'")
            except PresetExistsError as e:
                st.warning(f"⚠️ {e}")
            except ValueError as e:
                st.error(f"❌ {e}")

    st.markdown("---")
    blocked = session.generate_blocked_reason()
    if st.button("🚀 Generate Image", type="primary", disabled=blocked is not None, use_container_width=True):
        with st.spinner("Generating your studio shots..."):
            outcome = asyncio.run(session.generate())
        if outcome == Outcome.NOT_STARTED:
            notify("info", f"💡 {session.generate_blocked_reason() or 'Cannot start right now.'}")
        st.rerun()
    if blocked:
        st.caption(f"ℹ️ {blocked}")
    st.caption(f"Max {MAX_CONCURRENT_REQUESTS} simultaneous requests")

# RIGHT PANEL: results and refinement
with right:
    st.header("📸 Results")

    if not isinstance(state.view, Idle) and st.button("🔄 Start over", disabled=session.is_loading):
        session.reset()
        st.rerun()

    if state.error:
        st.error(f"❌ {state.error}")

    candidates = session.candidates
    history = session.history

    if candidates:
        st.subheader("Pick your favourite")
        cols = st.columns(len(candidates))
        for i, candidate in enumerate(candidates):
            with cols[i]:
                st.image(candidate.data, use_container_width=True)
                if st.button(f"✅ Use option {i + 1}", key=f"select_{i}"):
                    session.select_candidate(i)
                    st.rerun()
        if st.button("✖ Cancel selection"):
            session.cancel_selection()
            st.rerun()

    elif history:
        active = session.active_image
        st.image(active.data, use_container_width=True)
        st.download_button(
            "📥 Download image",
            data=export_file(active),
            file_name=suggest_filename(),
            mime="image/png",
            use_container_width=True,
        )
        if session.can_return_to_candidates and st.button("↩ Back to options"):
            session.return_to_candidates()
            st.rerun()

        if len(history) > 1:
            st.caption("History")
            cols = st.columns(len(history))
            for i, entry in enumerate(history.entries):
                with cols[i]:
                    st.image(entry.data, use_container_width=True)
                    label = "● current" if i == history.position else f"Version {i + 1}"
                    if st.button(label, key=f"history_{i}", disabled=i == history.position):
                        session.navigate_history(i)
                        st.rerun()

        st.header("✏️ Refine")
        command = st.text_area(
            "Refinement command",
            key="refine_command",
            placeholder='e.g. "make it darker", "move the product to the right"',
            height=80,
        )
        r1, r2 = st.columns(2)
        with r1:
            st.button("Refine", on_click=run_refinement, disabled=not session.can_refine(command), use_container_width=True)
        with r2:
            st.button(
                "✨ Improve command",
                on_click=improve_refinement,
                disabled=not session.can_refine(command),
                use_container_width=True,
            )

        st.caption("QUICK ADJUSTMENTS")
        cols = st.columns(len(QUICK_REFINEMENTS))
        for i, quick in enumerate(QUICK_REFINEMENTS):
            with cols[i]:
                if st.button(
                    quick["label"],
                    key=f"quick_{i}",
                    help=quick["description"],
                    disabled=not session.can_quick_refine(quick["command"]),
                    use_container_width=True,
                ):
                    with st.spinner(f"{quick['label']}..."):
                        asyncio.run(session.quick_refine(quick["command"]))
                    st.rerun()

    else:
        st.info("Your generated images will appear here")
