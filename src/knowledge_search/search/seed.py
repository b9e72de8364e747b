"""Default knowledge entries for a fresh database."""

import json
import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.db.models import KnowledgeEntry

logger = logging.getLogger(__name__)

DEFAULT_ENTRIES: list[dict[str, Any]] = [
    {
        "feature_module": "Authentication",
        "functionality": "User Login",
        "description": "Interface principal para acesso de usuários existentes ao Modo Caverna",
        "category": "authentication",
        "subcategory": "auth_login",
        "difficulty_level": "basico",
        "estimated_time": 2,
        "prerequisites": ["conta_criada", "email_verificado"],
        "related_features": ["password_recovery", "registration", "session_management"],
        "tags": ["login", "acesso", "autenticacao", "entrar", "signin"],
        "ui_elements": "E-mail field, Senha field, Acessar button, Mantenha-me conectado checkbox",
        "ui_elements_pt": ["E-mail", "Senha", "Acessar", "Mantenha-me conectado", "Esqueceu a senha?"],
        "user_questions_en": "How do I log in? I can't access my account",
        "user_questions_pt": [
            "Como eu faço login?",
            "Não consigo acessar minha conta",
            "Onde está o botão de entrar?",
            "Como entrar no sistema?",
        ],
        "content_text": (
            "Para acessar sua conta no Modo Caverna, use o formulário de login com seu e-mail "
            "e senha cadastrados. A entrada na caverna representa seu compromisso diário com "
            "a transformação pessoal."
        ),
        "quick_action": "E-mail → Senha → Acessar",
        "step_by_step_guide": [
            "Acesse a página de login do Modo Caverna",
            "Digite seu e-mail cadastrado no campo 'E-mail'",
            "Insira sua senha no campo 'Senha'",
            "Marque 'Mantenha-me conectado' se desejar sessão prolongada",
            "Clique no botão 'Acessar'",
            "Aguarde redirecionamento para a Central Caverna",
        ],
        "troubleshooting": (
            "Se login falhar: 1) Verificar se email/senha estão corretos, 2) Limpar cache do "
            "navegador, 3) Tentar recuperação de senha, 4) Verificar conexão com internet"
        ),
        "philosophy_integration": (
            "A entrada na caverna representa o compromisso diário com sua transformação pessoal."
        ),
    },
    {
        "feature_module": "Authentication",
        "functionality": "Password Recovery",
        "description": "Processo para redefinir senha esquecida",
        "category": "authentication",
        "subcategory": "auth_recovery",
        "difficulty_level": "basico",
        "estimated_time": 5,
        "prerequisites": ["conta_existente", "email_valido"],
        "related_features": ["user_login", "email_verification"],
        "tags": ["senha", "recuperar", "esqueci", "redefinir", "password"],
        "ui_elements": "Esqueceu a senha? link, Email field, Enviar link button",
        "ui_elements_pt": [
            "Esqueceu a senha?",
            "E-mail",
            "Enviar link de recuperação",
            "Voltar ao login",
        ],
        "user_questions_en": "What if I forget my password? How to reset password?",
        "user_questions_pt": [
            "O que eu faço se esquecer minha senha?",
            "Como redefinir minha senha?",
            "Não lembro minha senha",
            "Como recuperar acesso à conta?",
        ],
        "content_text": (
            "O processo de recuperação de senha permite que você redefina suas credenciais "
            "através de um link enviado por e-mail, garantindo acesso seguro à sua jornada "
            "de transformação."
        ),
        "quick_action": "Esqueceu a senha? → E-mail → Enviar link",
        "step_by_step_guide": [
            "Na tela de login, clique em 'Esqueceu a senha?'",
            "Digite seu e-mail cadastrado",
            "Clique em 'Enviar link de recuperação'",
            "Verifique sua caixa de entrada (e spam)",
            "Clique no link recebido por e-mail",
            "Crie uma nova senha forte",
        ],
        "troubleshooting": (
            "Se não receber o e-mail: 1) Verificar pasta de spam, 2) Aguardar até 10 minutos, "
            "3) Confirmar e-mail correto, 4) Tentar novamente, 5) Contatar suporte se persistir"
        ),
        "philosophy_integration": (
            "Mesmo quando perdemos o caminho, a alcatéia oferece uma forma de retornar."
        ),
    },
    {
        "feature_module": "Onboarding",
        "functionality": "Welcome Screen",
        "description": "Primeira tela de boas-vindas para novos membros da alcatéia",
        "category": "onboarding",
        "subcategory": "onboarding_welcome",
        "difficulty_level": "basico",
        "estimated_time": 3,
        "prerequisites": ["conta_criada"],
        "related_features": ["ai_assistant_setup", "video_tour", "profile_setup"],
        "tags": ["boas-vindas", "primeiro-acesso", "introducao", "caverna", "welcome"],
        "ui_elements": "Seja bem-vindo(a) à Caverna title, Começar jornada button",
        "ui_elements_pt": [
            "Seja bem-vindo(a) à Caverna",
            "Começar jornada",
            "Pular introdução",
            "Saiba mais",
        ],
        "user_questions_en": "What's the first screen I see? How to get started?",
        "user_questions_pt": [
            "Qual a primeira tela que vejo?",
            "Como começar no Modo Caverna?",
            "O que fazer primeiro?",
            "Como iniciar minha jornada?",
        ],
        "content_text": (
            "A tela de boas-vindas é seu primeiro contato com a filosofia Modo Caverna, "
            "apresentando os conceitos fundamentais de transformação pessoal e vida intencional."
        ),
        "quick_action": "Ler introdução → Começar jornada",
        "step_by_step_guide": [
            "Leia a mensagem de boas-vindas com atenção",
            "Absorva a filosofia do Modo Caverna",
            "Clique em 'Começar jornada' para o onboarding completo",
            "Ou 'Pular introdução' se já conhece a plataforma",
        ],
        "troubleshooting": (
            "Se a tela não carregar: 1) Aguardar carregamento completo, 2) Atualizar página, "
            "3) Verificar conexão, 4) Tentar outro navegador"
        ),
        "philosophy_integration": (
            "Bem-vindo à caverna, lobo. Somos uma alcatéia ativando o Modo Caverna."
        ),
    },
    {
        "feature_module": "Onboarding",
        "functionality": "AI Assistant Setup",
        "description": (
            "Configuração do assistente de IA via WhatsApp para acompanhamento personalizado"
        ),
        "category": "onboarding",
        "subcategory": "onboarding_ai_setup",
        "difficulty_level": "intermediario",
        "estimated_time": 5,
        "prerequisites": ["welcome_screen_completed"],
        "related_features": ["whatsapp_integration", "notifications", "reminders"],
        "tags": ["assistente", "ia", "whatsapp", "acompanhamento", "ai"],
        "ui_elements": "Seu WhatsApp field, Conectar assistente button, Pular por agora link",
        "ui_elements_pt": ["Seu WhatsApp", "Conectar assistente", "Pular por agora", "Testar conexão"],
        "user_questions_en": "What is the AI assistant? How to connect WhatsApp?",
        "user_questions_pt": [
            "O que é o assistente de IA?",
            "Como conectar meu WhatsApp?",
            "Para que serve o assistente?",
            "É seguro dar meu número?",
        ],
        "content_text": (
            "O assistente de IA é seu companheiro digital na jornada de transformação, "
            "enviando lembretes, motivação e acompanhamento personalizado via WhatsApp."
        ),
        "quick_action": "Número do WhatsApp → Conectar assistente",
        "step_by_step_guide": [
            "Digite seu número de WhatsApp no formato (11) 99999-9999",
            "Clique em 'Conectar assistente'",
            "Aguarde mensagem de verificação no WhatsApp",
            "Configure preferências de horário e frequência",
        ],
        "troubleshooting": (
            "Se não receber mensagens: 1) Verificar número digitado, 2) Confirmar WhatsApp "
            "funcionando, 3) Verificar bloqueios de números desconhecidos, 4) Reconectar"
        ),
        "philosophy_integration": (
            "O assistente é como um lobo experiente da alcatéia que te acompanha."
        ),
    },
    {
        "feature_module": "Dashboard",
        "functionality": "Central Caverna",
        "description": "Painel principal de comando da jornada de transformação pessoal",
        "category": "dashboard",
        "subcategory": "dashboard_main",
        "difficulty_level": "basico",
        "estimated_time": 3,
        "prerequisites": ["onboarding_completed"],
        "related_features": ["streak_counter", "rituals", "challenges", "agenda"],
        "tags": ["dashboard", "painel", "central", "caverna", "inicio"],
        "ui_elements": "Navigation tabs, Widgets, Quick actions, Progress indicators",
        "ui_elements_pt": ["Central Caverna", "Visão Geral", "Ações Rápidas", "Progresso", "Navegação"],
        "user_questions_en": "What's on the main screen? How to navigate?",
        "user_questions_pt": [
            "O que tem na tela principal?",
            "Como navegar no sistema?",
            "Onde vejo meu progresso?",
            "Como usar o dashboard?",
        ],
        "content_text": (
            "A Central Caverna é seu centro de comando pessoal, oferecendo visão completa da "
            "jornada de transformação com widgets de progresso, ações rápidas e navegação intuitiva."
        ),
        "quick_action": "Visualizar progresso → Acessar funcionalidades",
        "step_by_step_guide": [
            "Observe o contador de dias consecutivos",
            "Verifique status dos rituais diários",
            "Analise progresso dos desafios ativos",
            "Use ações rápidas para tarefas frequentes",
        ],
        "troubleshooting": (
            "Se dashboard não carrega: 1) Atualizar página (F5), 2) Verificar conexão, "
            "3) Aguardar sincronização, 4) Fazer logout/login, 5) Limpar cache"
        ),
        "philosophy_integration": "A Central Caverna é o coração da sua transformação.",
    },
    {
        "feature_module": "Cave Challenge",
        "functionality": "Challenge Welcome",
        "description": "Portal de entrada para o desafio de transformação de 40 dias",
        "category": "challenges",
        "subcategory": "challenges_welcome",
        "difficulty_level": "intermediario",
        "estimated_time": 10,
        "prerequisites": ["rituais_configurados", "perfil_completo"],
        "related_features": ["challenge_setup", "habit_tracking", "community"],
        "tags": ["desafio", "40-dias", "transformacao", "compromisso", "challenge"],
        "ui_elements": "Desafio Caverna title, Eu aceito o desafio button, Saiba mais link",
        "ui_elements_pt": ["Desafio Caverna", "Eu aceito o desafio", "Saiba mais", "Requisitos"],
        "user_questions_en": "How do I start the challenge? What is the 40-day challenge?",
        "user_questions_pt": [
            "Como eu começo o desafio?",
            "O que é o Desafio Caverna?",
            "Estou pronto para o desafio?",
            "Quais são os requisitos?",
        ],
        "content_text": (
            "O Desafio Caverna é uma jornada intensiva de 40 dias focada em transformação "
            "profunda através da eliminação de hábitos destrutivos e criação de novos padrões "
            "de excelência."
        ),
        "quick_action": "Ler sobre desafio → Eu aceito o desafio",
        "step_by_step_guide": [
            "Leia sobre o compromisso de 40 dias",
            "Avalie se está pronto para a jornada",
            "Clique 'Eu aceito o desafio' apenas se comprometido",
            "Prepare-se mentalmente para 40 dias de disciplina",
        ],
        "troubleshooting": (
            "Se não se sente pronto: 1) Comece com rituais simples, 2) Fortaleça consistência "
            "básica, 3) Participe da comunidade, 4) Defina objetivos menores"
        ),
        "philosophy_integration": "O Desafio Caverna é o ritual de passagem da alcatéia.",
    },
    {
        "feature_module": "Flow Produtividade",
        "functionality": "Sistema completo de foco e produtividade",
        "description": (
            "Ferramenta principal para ativar o estado de flow e maximizar a produtividade "
            "através do foco absoluto"
        ),
        "category": "Produtividade",
        "subcategory": "flow_state",
        "difficulty_level": "intermediario",
        "estimated_time": 45,
        "prerequisites": ["onboarding_completo", "rituais_configurados"],
        "related_features": ["pomodoro", "kanban", "playlists", "checklist_flow"],
        "tags": ["flow", "foco", "produtividade", "pomodoro", "kanban", "concentracao"],
        "ui_elements": (
            "Checklist de Ativação do FLOW, Timer Pomodoro, Quadro Kanban, Player de Playlists"
        ),
        "ui_elements_pt": [
            "Checklist de Ativação",
            "Timer Pomodoro",
            "Quadro Kanban",
            "Player de Música",
            "Contador de Minutos",
        ],
        "user_questions_en": "How to activate flow state? How to use pomodoro? How to manage tasks?",
        "user_questions_pt": [
            "Como ativar o estado de flow?",
            "Como usar o pomodoro?",
            "Como gerenciar tarefas no Kanban?",
            "Como registrar minutos de foco?",
        ],
        "content_text": (
            "O Flow Produtividade é o coração do sistema Modo Caverna, implementando a filosofia "
            "PROPÓSITO > FOCO > PROGRESSO. Inclui Checklist de Ativação do FLOW, Pomodoro com "
            "registro preciso de minutos em foco, sistema Kanban para gerenciamento visual de "
            "tarefas e playlists especializadas para estudar, trabalhar e focar."
        ),
        "quick_action": "Ativar checklist de flow e iniciar sessão Pomodoro",
        "step_by_step_guide": [
            "Abra o Flow Produtividade no menu principal",
            "Complete o Checklist de Ativação do FLOW",
            "Selecione a playlist adequada para sua atividade",
            "Configure o timer Pomodoro (25 min trabalho + 5 min pausa)",
            "Registre minutos de foco ao final da sessão",
        ],
        "troubleshooting": (
            "Se não conseguir manter o foco: 1) Verifique se completou o checklist de ativação, "
            "2) Elimine todas as distrações do ambiente, 3) Ajuste o tempo do Pomodoro"
        ),
        "philosophy_integration": (
            "O Flow representa a essência do Modo Caverna, o momento onde você se torna um "
            "com sua missão."
        ),
    },
]

JSON_LIST_FIELDS = (
    "prerequisites",
    "related_features",
    "tags",
    "ui_elements_pt",
    "step_by_step_guide",
)


def build_entry(data: dict[str, Any]) -> KnowledgeEntry:
    """Create a KnowledgeEntry, encoding list fields as JSON text."""
    fields = dict(data)
    for name in JSON_LIST_FIELDS:
        fields[name] = json.dumps(fields.get(name, []), ensure_ascii=False)
    questions = fields.get("user_questions_pt", "")
    if isinstance(questions, list):
        fields["user_questions_pt"] = " ".join(questions)
    return KnowledgeEntry(**fields)


async def seed_knowledge_base(
    session: AsyncSession,
    entries: list[dict[str, Any]] | None = None,
    force: bool = False,
) -> int:
    """Insert the default entries when the table is empty.

    Args:
        session: Database session
        entries: Entries to insert instead of the defaults
        force: Insert even if entries already exist

    Returns:
        Number of entries inserted
    """
    existing = (await session.execute(select(func.count(KnowledgeEntry.id)))).scalar_one()
    if existing and not force:
        logger.info(f"Knowledge base already has {existing} entries, skipping seed")
        return 0

    to_insert = entries if entries is not None else DEFAULT_ENTRIES
    for data in to_insert:
        session.add(build_entry(data))
    await session.commit()
    logger.info(f"Seeded {len(to_insert)} knowledge entries")
    return len(to_insert)
