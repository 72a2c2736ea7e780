"""
Prompts for Practice Problems and Learning Advice.

Builders for every system prompt the tutor sends:
- Problem generation (one problem for a skill at a level)
- Answer evaluation (grading against the problem's check points)
- Skip challenge (one composite problem for a whole unit)
- Daily advice and stumble analysis (advisor)

All prompts ask for JSON only; parsing lives in src.core.practice and
src.learning.advisor.
"""
from __future__ import annotations

from collections.abc import Sequence

from src.catalog.skills import SkillDefinition
from src.core.practice import GeneratedProblem

# =============================================================================
# Shared fragments
# =============================================================================

TUTOR_PERSONA = """あなたは高校数学の学習をサポートするガイドです。
学習者を否定せず、丁寧語で、次に何をすればよいかを具体的に示してください。"""

PROBLEM_JSON_FORMAT = """以下のJSON形式で**のみ**出力してください:
{
  "questionText": "問題文（LaTeX 対応）",
  "correctAnswer": "正解（値や式）",
  "solutionSteps": ["解法ステップ1", "ステップ2"],
  "checkPoints": ["チェックポイント1", "チェックポイント2"],
  "targetPattern": "この問題が検証するパターンの説明",
  "cardInfo": {"cardName": "カード名", "trigger": "使う場面", "method": "解き方"}
}"""

LEVEL_DESCRIPTIONS: dict[int, str] = {
    1: "基本問題: 教科書の例題レベル。1つのテクニックで解け、数値は小さめ。",
    2: "標準問題: 章末問題レベル。2段階程度の手順を要する。",
    3: "応用問題: 複数の考え方を組み合わせる。",
    4: "発展問題: 入試レベル。条件の読み取りと方針決定が必要。",
}

GENERATE_PROBLEM_REQUEST = "スキル「{name}」のLevel {level} の練習問題を1問作成してください。"
SKIP_CHALLENGE_REQUEST = "スキップ試問を1問生成してください。"
DAILY_ADVICE_REQUEST = "今日のおすすめ学習を教えてください。"
STUMBLE_REQUEST = "この問題でつまずきました。アドバイスをお願いします。"


def _numbered(items: Sequence[str]) -> str:
    return "\n".join(f"{i + 1}. {item}" for i, item in enumerate(items))


# =============================================================================
# Practice
# =============================================================================


def build_problem_generation_prompt(skill: SkillDefinition, level: int) -> str:
    keywords = "、".join(skill.keywords) or "なし"
    return f"""あなたは高校数学の問題を作成する専門家です。

## 対象スキル
- **スキルID**: {skill.id}
- **スキル名**: {skill.name}
- **カテゴリ**: {skill.category} > {skill.subcategory}
- **キーワード**: {keywords}

## 難易度
Level {level}: {LEVEL_DESCRIPTIONS.get(level, "")}

## 出力形式
{PROBLEM_JSON_FORMAT}

数式は KaTeX 対応の LaTeX 記法で（$...$ で囲む）書いてください。
"""


def build_answer_evaluation_prompt(problem: GeneratedProblem) -> str:
    return f"""あなたは高校数学の採点者です。生徒の回答を評価してください。

## 出題された問題
{problem.question_text}

## 正解
{problem.correct_answer}

## 解法ステップ
{_numbered(problem.solution_steps)}

## 評価チェックポイント
{_numbered(problem.check_points)}

## 判定基準
- 表記の揺れや数学的に同値な表現は正解とする
- 途中式のみで最終回答がない場合は不正解
- confidence は high / medium / low。判定できない回答は low とし、isCorrect は必ず false

## 出力形式
以下のJSON形式で**のみ**出力してください:
{{
  "isCorrect": true または false,
  "confidence": "high" | "medium" | "low",
  "feedback": "学習者向けフィードバック（日本語）",
  "matchedCheckPoints": ["達成したチェックポイント"],
  "missedCheckPoints": ["未達のチェックポイント"],
  "indeterminateReason": "confidence が low の場合のみ: 判定不能の理由"
}}
"""


def build_skip_challenge_prompt(
    category: str, subcategory: str, skill_names: Sequence[str], keywords: Sequence[str]
) -> str:
    return f"""あなたは数学の問題作成者です。

## タスク
「{category} > {subcategory}」の単元をスキップするための総合的な試問を1問作成してください。

この単元には以下のスキルが含まれます:
{"、".join(skill_names)}

関連キーワード: {"、".join(keywords)}

## 問題の条件
- Level 3（応用問題）相当の難易度
- 単元内の複数のスキルを組み合わせた総合問題
- 基礎が分かっていれば解け、分かっていなければ解けない問題
- 10分以内で解ける計算量

## 出力形式
{PROBLEM_JSON_FORMAT}
"""


# =============================================================================
# Advisor
# =============================================================================

RECOMMENDATION_JSON_FORMAT = """{
  "greeting": "ひと言の挨拶（30文字以内、丁寧語）",
  "advice": "全体的なアドバイス文（丁寧語で1-2文）",
  "recommendedSkills": [
    {"skillId": "スキルID", "skillName": "スキル名", "reason": "理由", "type": "new | review | continue"}
  ],
  "reviewSuggestions": [
    {"skillId": "スキルID", "skillName": "スキル名", "reason": "復習をおすすめする理由"}
  ]
}"""


def build_daily_advisor_prompt(skill_map_summary: str) -> str:
    return f"""{TUTOR_PERSONA}

## 追加役割: 学習ナビゲーション
以下の学習者の情報を分析し、挨拶と今日の学習アドバイスを提供してください。

{skill_map_summary}

## タスク
1. 今日取り組むべきスキルを最大3つ推薦する（学習中なら continue、新しいスキルは new、つまずいたスキルは review）
2. 全体的な学習アドバイスを1-2文で
3. 学習状況に基づいた30文字以内のひと言を greeting に

## 出力形式
以下のJSON形式で**のみ**出力してください。skillId はスキルマップに記載されたIDをそのまま使ってください。
{RECOMMENDATION_JSON_FORMAT}
"""


def build_stumble_analysis_prompt(
    skill_map_summary: str,
    skill_name: str,
    evaluation_feedback: str,
    missed_check_points: Sequence[str],
) -> str:
    return f"""{TUTOR_PERSONA}

## 追加役割: つまずき分析

### 学習者のスキルマップ
{skill_map_summary}

### 今回のつまずき
- スキル: {skill_name}
- フィードバック: {evaluation_feedback}
- 見落としたチェックポイント: {", ".join(missed_check_points)}

## タスク
1. つまずきの原因を分析する（前提スキルの弱さ、計算ミス、概念理解不足など）
2. 復習すべきスキルがあれば最大3件提案する

## 出力形式
以下のJSON形式で**のみ**出力してください:
{{
  "analysis": "つまずきの分析と励ましのメッセージ（丁寧語で2-3文）",
  "reviewSuggestions": [
    {{"skillId": "スキルID", "skillName": "スキル名", "reason": "復習をおすすめする理由"}}
  ]
}}
"""
