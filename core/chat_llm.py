import json
import logging
import urllib.error
import urllib.request

from django.conf import settings

from .chat_commands import (
    InvalidCommandArguments,
    UnknownCommand,
    execute_command,
    function_catalogue,
    parse_command,
)

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"
MAX_TOOL_ROUNDS = 3
FALLBACK_REPLY = "Lo siento, no pude procesar tu solicitud."


class ChatCompletionError(Exception):
    pass


def llm_is_configured():
    return bool((settings.OPENAI_API_KEY or "").strip())


def get_system_prompt():
    form_url = settings.TUTOR_SIGNUP_FORM_URL
    whatsapp = settings.WHATSAPP_NUMBER
    return f"""Eres el asistente de Chamba Tutorías, una plataforma que conecta estudiantes con tutores voluntarios para tutorías gratuitas en línea.

Tu rol es:
1. Ayudar a los estudiantes a encontrar tutores para sus materias
2. Ayudar a tutores aprobados a registrar o actualizar su perfil
3. Dirigir a personas que quieren ser tutores y no están aprobadas al formulario o WhatsApp

Personalidad:
- Amigable, motivador y profesional
- Usa español mexicano casual pero respetuoso
- Usa emojis ocasionalmente 📚✨🎓
- Sé conciso pero útil

FORMATO DE RESPUESTA:
- NO uses formato markdown (no asteriscos **, no corchetes [], no paréntesis para links)
- Escribe URLs en texto plano sin formato

IMPORTANTE: Este es un servicio GRATUITO de tutorías con voluntarios. NO hay cobro.

Flujo para ESTUDIANTES:
1. Pregunta su nombre
2. Pregunta en qué materia necesitan ayuda
3. Usa la función search_tutors para buscar tutores disponibles
4. Presenta máximo 3 opciones con sus links de agendamiento
5. Si quieren dejar registrada su solicitud, verifica su teléfono con send_otp y verify_otp y usa create_tutoring_request

Flujo para TUTORES:
1. Pide su teléfono con código de país y usa send_otp, luego verify_otp con el código que te den
2. Usa create_tutor_profile o update_tutor_profile con las materias que enseñan
3. Si la función responde NOT_APPROVED, indícales que llenen el formulario {form_url} o envíen un WhatsApp al {whatsapp} escribiendo "Tutor" y su nombre

IMPORTANTE:
- No inventes tutores, usa solo los datos de la base de datos
- Si no hay tutores disponibles, dilo honestamente"""


def sanitize_history(history, limit=None):
    """Keep plain user/assistant turns; tool plumbing is not replayed."""
    if limit is None:
        limit = settings.CHAT_HISTORY_LIMIT
    cleaned = []
    for item in history or []:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if role not in {"user", "assistant"} or not isinstance(content, str) or not content:
            continue
        cleaned.append({"role": role, "content": content})
    return cleaned[-limit:] if limit > 0 else cleaned


def request_completion(messages, tools=None):
    api_key = (settings.OPENAI_API_KEY or "").strip()
    if not api_key:
        raise ChatCompletionError("missing_api_key")

    payload = {
        "model": settings.OPENAI_MODEL,
        "messages": messages,
        "temperature": 0.7,
        "max_tokens": 500,
    }
    if tools:
        payload["tools"] = tools
        payload["tool_choice"] = "auto"

    req_obj = urllib.request.Request(
        CHAT_COMPLETIONS_URL,
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
    )
    try:
        with urllib.request.urlopen(req_obj, timeout=settings.OPENAI_TIMEOUT_SECONDS) as resp:
            body = json.loads(resp.read().decode("utf-8"))
        return body["choices"][0]["message"]
    except (urllib.error.URLError, OSError, ValueError, KeyError, IndexError, TypeError) as exc:
        raise ChatCompletionError(str(exc)) from exc


class LlmChat:
    def __init__(self, user=None):
        self.user = user
        self.authenticated_user = None

    def run_tool_call(self, tool_call):
        function = tool_call.get("function") or {}
        name = function.get("name", "")
        try:
            arguments = json.loads(function.get("arguments") or "{}")
            command = parse_command(name, arguments)
        except ValueError as exc:
            return {"success": False, "error": f"Argumentos inválidos: {exc}"}
        except (UnknownCommand, InvalidCommandArguments) as exc:
            return {"success": False, "error": str(exc) or "Función desconocida"}

        acting_user = self.authenticated_user or self.user
        try:
            outcome = execute_command(command, acting_user)
        except Exception as exc:
            logger.exception("Chat tool %s failed", name)
            raise ChatCompletionError(f"tool {name} failed: {exc}") from exc
        if outcome.authenticated_user is not None:
            self.authenticated_user = outcome.authenticated_user
        return outcome.payload

    def reply(self, message, history=None):
        turns = sanitize_history(history)
        turns.append({"role": "user", "content": message})
        messages = [{"role": "system", "content": get_system_prompt()}, *turns]
        tools = function_catalogue()

        assistant = request_completion(messages, tools)
        rounds = 0
        while assistant.get("tool_calls") and rounds < MAX_TOOL_ROUNDS:
            rounds += 1
            messages.append(
                {
                    "role": "assistant",
                    "content": assistant.get("content"),
                    "tool_calls": assistant["tool_calls"],
                }
            )
            for tool_call in assistant["tool_calls"]:
                result = self.run_tool_call(tool_call)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": tool_call.get("id", ""),
                        "content": json.dumps(result, ensure_ascii=False, default=str),
                    }
                )
            assistant = request_completion(messages, tools)

        content = (assistant.get("content") or "").strip() or FALLBACK_REPLY
        turns.append({"role": "assistant", "content": content})
        return {
            "message": content,
            "conversationHistory": turns,
            "useAI": True,
        }
