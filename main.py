import streamlit as st
import os
import json
import asyncio
import logging
import nest_asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import List
import traceback

from config import AppConfig, configure_logging
from agents.errors import ScenarioGenerationError
from agents.pipeline import ScenarioPipeline
from models.scenario import Credentials, GenerationRequest, GenerationResult

# Apply nest_asyncio to allow async execution in Streamlit
nest_asyncio.apply()

logger = logging.getLogger(__name__)


def get_api_key():
    """Get API key from st.secrets or environment variables."""
    try:
        return st.secrets["GEMINI_API_KEY"]
    except (KeyError, FileNotFoundError):
        return os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")


config = AppConfig.from_env()
config.gemini.api_key = get_api_key() or ""
configure_logging(config.log_level)

if not config.gemini.api_key:
    st.error("GEMINI_API_KEY not found. Please set it in .streamlit/secrets.toml or .env file.")

if config.automation.backend == "playwright":
    # Install Playwright browsers (important for Streamlit Cloud deployment)
    os.system("playwright install chromium")


def save_outputs(result: GenerationResult, results_dir: str, mirror_dir: str | None = None) -> List[Path]:
    """Write both scenario snapshots and every compiled spec to disk."""
    timestamp = datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")
    results = Path(results_dir)
    results.mkdir(parents=True, exist_ok=True)

    written = []
    for prefix, run in (("gemini_scenarios", result.gemini_output), ("mcp_scenarios", result.mcp_output)):
        path = results / f"{prefix}_{timestamp}.json"
        path.write_text(run.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        written.append(path)

    targets = [results] + ([Path(mirror_dir)] if mirror_dir else [])
    for target in targets:
        target.mkdir(parents=True, exist_ok=True)
        for artifact in result.artifacts:
            path = target / artifact.file_name
            path.write_text(artifact.source, encoding="utf-8")
            written.append(path)

    for path in written:
        logger.info(f"Saved {path}")
    return written


# Page Config
st.set_page_config(
    page_title="Playwright シナリオコンパイラ",
    page_icon="🤖",
    layout="wide"
)

# Initialize Session State
if "generation_result" not in st.session_state:
    st.session_state.generation_result = None
if "saved_files" not in st.session_state:
    st.session_state.saved_files = []

# Sidebar
with st.sidebar:
    st.title("設定")
    selector_strategy = st.selectbox(
        "セレクタ戦略",
        ["role-first", "css"],
        index=["role-first", "css"].index(config.output.selector_strategy),
    )
    language = st.selectbox(
        "出力言語",
        ["typescript", "python"],
        index=["typescript", "python"].index(config.output.language),
    )
    validate_live = st.checkbox("ライブブラウザでセレクタを検証", value=config.automation.enabled)

st.title("🤖 テストシナリオコンパイラ")

with st.form("generation_form"):
    objective = st.text_area("テスト目的", placeholder="例: ログインフローを検証する")
    url = st.text_input("対象URL", placeholder="https://example.com")
    col1, col2 = st.columns(2)
    with col1:
        username = st.text_input("ユーザー名 (任意)")
    with col2:
        password = st.text_input("パスワード (任意)", type="password")
    run_id = st.text_input("Run ID (任意)")
    submitted = st.form_submit_button("生成")

if submitted:
    if not objective.strip() or not url.strip():
        st.warning("テスト目的と対象URLを入力してください。")
    else:
        request = GenerationRequest(
            objective=objective.strip(),
            url=url.strip(),
            credentials=Credentials(username=username, password=password or None) if username else None,
            run_id=run_id.strip() or None,
        )
        config.automation.enabled = validate_live
        config.output.selector_strategy = selector_strategy
        config.output.language = language

        async def run_pipeline():
            pipeline = ScenarioPipeline.from_config(config)
            status_container = st.status("シナリオを生成中...", expanded=True)
            try:
                status_container.write("Gemini にシナリオを問い合わせ中...")
                result = await pipeline.run(request)
                st.session_state.generation_result = result
                st.session_state.saved_files = save_outputs(
                    result, config.output.results_dir, config.output.mirror_dir
                )
                status_container.update(label="生成完了！", state="complete", expanded=False)
            except ScenarioGenerationError as e:
                st.error(f"生成失敗: {e}")
                traceback.print_exc()
                status_container.update(label="生成失敗", state="error")

        asyncio.run(run_pipeline())

# Results Display
result = st.session_state.generation_result
if result is not None:
    st.subheader("実行結果")
    st.write(f"**Run ID:** {result.mcp_output.run_id}")
    st.write(f"**シナリオ数:** {len(result.mcp_output.scenarios)}")
    st.write(f"**セレクタ検証:** {'成功' if result.mcp_validation_successful else '未実施 / 失敗'}")
    st.write(
        f"**コンパイル:** {len(result.compilation.successful)} 成功 / {len(result.compilation.failed)} 失敗"
    )

    for failure in result.compilation.failed:
        st.error(f"{failure.scenario_name}: {failure.error}")

    tab_before, tab_after = st.tabs(["Gemini のみ", "検証後"])
    with tab_before:
        st.json(json.loads(result.gemini_output.model_dump_json(by_alias=True)))
    with tab_after:
        st.json(json.loads(result.mcp_output.model_dump_json(by_alias=True)))

    st.subheader("生成されたテスト")
    for artifact in result.artifacts:
        with st.expander(artifact.file_name):
            st.code(artifact.source, language="typescript" if artifact.file_name.endswith(".ts") else "python")
            st.download_button("ダウンロード", artifact.source, file_name=artifact.file_name, key=f"download_{artifact.scenario_id}")

    if st.session_state.saved_files:
        st.caption("保存先: " + ", ".join(str(p) for p in st.session_state.saved_files))
