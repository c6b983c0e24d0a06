import asyncio
import logging
import os

import streamlit as st

from plantdx.domain.errors import DiagnosisError, OrchestrationError
from plantdx.domain.models import DiagnosisResult
from plantdx.infrastructure.config import Settings
from plantdx.infrastructure.container import build_diagnose_use_case


logger = logging.getLogger(__name__)


DISCLAIMER = (
    "🌱 **Note:** Automated diagnoses combine several third-party classifiers and can be wrong. "
    "Confirm serious cases with a local agronomist before applying chemical treatments."
)


def _get_use_case():
    if "diagnose_use_case" not in st.session_state:
        st.session_state.diagnose_use_case = build_diagnose_use_case(Settings())
    return st.session_state.diagnose_use_case


def _render_sidebar(use_case) -> str:
    st.sidebar.title("⚙️ Settings")
    info = use_case.service_info()

    st.sidebar.markdown("### Providers")
    if info["enabled_providers"]:
        for p in info["enabled_providers"]:
            st.sidebar.caption(f"✓ {p['provider']}")
    else:
        st.sidebar.warning("⚠️ No providers configured. Set API keys or ML_ENABLE_MOCK=true.")
    st.sidebar.caption(f"**Primary:** {info['primary_provider']}  \n**Fallback:** {info['fallback_provider']}")

    default_index = 1 if info["ensemble_enabled"] else 0
    mode = st.sidebar.radio("Mode", ["primary", "ensemble"], index=default_index)

    if st.sidebar.button("🩺 Check provider health", use_container_width=True):
        report = asyncio.run(use_case.provider_health())
        for entry in report:
            st.sidebar.caption(f"{entry['provider']}: {entry['status']}")
    return mode


def _format_diagnosis(result: DiagnosisResult) -> str:
    lines = [f"## {result.disease_name}"]
    lines.append(
        f"**Confidence:** {result.confidence * 100:.0f}% · **Severity:** {result.severity} · "
        f"**Expected recovery:** {result.expected_recovery_time}"
    )
    if result.consensus:
        c = result.consensus
        lines.append(
            f"**Agreement:** {c.agreement_level * 100:.0f}% · **Reliability:** {c.reliability_score:.2f}"
            + (" · ⚠️ providers disagreed" if c.conflicting_predictions else "")
        )
    lines.append(f"_Providers used: {', '.join(result.providers_used)}_\n")

    if result.symptoms:
        lines.append("### Symptoms")
        lines.extend(f"- {s}" for s in result.symptoms)
    if result.treatments:
        lines.append("### Treatment")
        for t in result.treatments:
            lines.append(f"**{t.type.title()}** ({t.duration}, {t.frequency})")
            lines.extend(f"- {step}" for step in t.steps)
    if result.prevention_tips:
        lines.append("### Prevention")
        lines.extend(f"- {tip}" for tip in result.prevention_tips)
    if result.provider_errors:
        lines.append("### Provider issues")
        lines.extend(f"- {e.provider}: {e.message}" for e in result.provider_errors)
    return "\n".join(lines)


def main():
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

    st.set_page_config(page_title="Plant Disease Diagnosis", page_icon="🌿", layout="centered")

    use_case = _get_use_case()
    mode = _render_sidebar(use_case)

    st.markdown("# 🌿 Plant Disease Diagnosis")
    st.info(DISCLAIMER)

    uploads = st.file_uploader(
        "Upload one or more photos of the affected plant",
        type=use_case.supported_formats,
        accept_multiple_files=True,
    )
    crop = st.text_input("Crop (optional)", placeholder="e.g., tomato")

    if uploads and st.button("Diagnose", type="primary"):
        images = [u.getvalue() for u in uploads]
        with st.spinner("🔬 Consulting classifiers..."):
            try:
                result = asyncio.run(use_case.diagnose(images, crop_hint=crop or None, mode=mode))
            except OrchestrationError as e:
                logger.exception("Diagnosis failed: %s", e)
                st.error("❌ **All providers failed**")
                for err in e.errors:
                    st.caption(f"{err.provider}: {err.message}")
                return
            except DiagnosisError as e:
                logger.exception("Diagnosis failed: %s", e)
                st.error(f"❌ **Error during diagnosis:** {e}")
                return
        st.markdown(_format_diagnosis(result))


if __name__ == "__main__":
    main()
